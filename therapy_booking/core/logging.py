import logging
from contextvars import ContextVar
from .config import settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

def _install_record_factory():
    old_factory = logging.getLogRecordFactory()
    if getattr(old_factory, "_request_id_aware", False):
        return
    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.request_id = request_id_ctx.get()
        return record
    record_factory._request_id_aware = True
    logging.setLogRecordFactory(record_factory)

def setup_logging():
    level = logging.DEBUG if settings.ENV == "local" else logging.INFO
    # attach request_id to every record before the format string needs it
    _install_record_factory()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s",
    )
    # chatty at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
