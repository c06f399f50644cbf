import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from toptake.core.config import get_settings
from toptake.models.audit_log import AuditLog
from toptake.models.credit_balance import CreditBalance
from toptake.models.credit_history import CreditHistoryEntry
from toptake.models.failed_job import FailedJob
from toptake.models.prompt_day import PromptDay
from toptake.models.submission import Submission
from toptake.models.user import User

DOCUMENT_MODELS = [
    User,
    PromptDay,
    Submission,
    CreditBalance,
    CreditHistoryEntry,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(client=None) -> None:
    """Bind Beanie documents. A pre-built client (e.g. a mock in tests) may be passed in."""
    settings = get_settings()
    if client is None:
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
