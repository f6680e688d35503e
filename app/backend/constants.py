APP_NAME = "STEM Assistant Backend"
APP_VERSION = "1.0.0"
DEFAULT_CORS_ALLOW_ORIGINS = [
	"http://localhost",
	"http://127.0.0.1",
	"http://localhost:3000",
	"http://localhost:5173",
]
DEFAULT_TRUSTED_HOSTS = [
	"127.0.0.1",
	"localhost",
	"testserver",
]

DEFAULT_ASSISTANT_MODEL = "gpt-4o-mini"
DEFAULT_ASSISTANT_NAME = "STEM Assistant"
DEFAULT_AZURE_API_VERSION = "2024-05-01-preview"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_OPENAI_TIMEOUT_S = 30.0
DEFAULT_CHAT_POLL_INTERVAL_S = 1.0
DEFAULT_LONG_POLL_INTERVAL_S = 1.5
DEFAULT_RUN_TIMEOUT_S = 120.0
DEFAULT_SESSION_TTL_S = 6 * 60 * 60

SESSION_HEADER = "X-Session-ID"

NO_RESPONSE_TEXT = "(No response)"
SUMMARY_ERROR_TITLE = "Summary Error"
SUMMARY_ERROR_TEXT = "Could not parse summary. Please try again."
SUMMARY_TITLE_WORDS = 8

ACTIVE_RUN_STATUSES = ("queued", "in_progress")
CANCELLABLE_RUN_STATUSES = ("queued", "in_progress", "requires_action")

LANGUAGE_NAMES = {
	"en": "English",
	"es": "Spanish",
	"hi": "Hindi",
	"kn": "Kannada",
	"mr": "Marathi",
}

AGE_GROUPS = (
	(5, 8),
	(9, 12),
	(13, 16),
)
