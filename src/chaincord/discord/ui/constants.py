"""Constants for UI components."""

HTTP_OK = 200
HTTP_REDIRECTS = (301, 302, 303, 307, 308)

RENTRY_URL = "https://rentry.co"
RENTRY_TIMEOUT_SECONDS = 30.0

DOWNLOAD_RESPONSE_ID = "chaincord:response:download"
VIEW_RESPONSE_BETTER_ID = "chaincord:response:better"
RETRY_RESPONSE_ID = "chaincord:response:retry"

DOWNLOAD_FILENAME = "response.md"
