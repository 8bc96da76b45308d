import json
import logging
import os

from smsdesk.core.config import config
from smsdesk.models import Activation, Rental, Transaction

# ledger entries (transactions)
TRANSACTION_FIELDS = {c.name for c in Transaction.__table__.columns}
# замовлення
ORDER_FIELDS = (
    {c.name for c in Activation.__table__.columns}
    | {c.name for c in Rental.__table__.columns}
)
RECONCILIATION_FIELDS = {"context"}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ModelFormatter(logging.Formatter):
    def __init__(self, fmt=None, fields=None):
        super().__init__(fmt)
        self.fields = fields or set()

    def format(self, record):
        base = super().format(record)
        extras = {k: v for k, v in record.__dict__.items() if k in self.fields}
        if extras:
            base += " " + json.dumps(extras, default=str, ensure_ascii=False)
        return base


def _file_logger(name: str, filename: str, fields: set, level=logging.INFO) -> logging.Logger:
    handler = logging.FileHandler(os.path.join(config.LOG_DIR, filename))
    handler.setFormatter(ModelFormatter(LOG_FORMAT, fields=fields))
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # повторний виклик (reload, тести) не дублює handlers
    for existing in list(logger.handlers):
        if isinstance(existing, logging.FileHandler) and existing.baseFilename == handler.baseFilename:
            logger.removeHandler(existing)
            existing.close()
    logger.addHandler(handler)
    return logger


# setup
def setup_logging():
    os.makedirs(config.LOG_DIR, exist_ok=True)

    _file_logger("[LEDGER]", "ledger.log", TRANSACTION_FIELDS)
    _file_logger("[PURCHASE]", "purchase.log", ORDER_FIELDS)
    _file_logger("[LIFECYCLE]", "lifecycle.log", ORDER_FIELDS)
    _file_logger("[RECONCILE]", "reconcile.log", ORDER_FIELDS)
    _file_logger("[WEBHOOK]", "webhook.log", ORDER_FIELDS)
    _file_logger("[ADMIN]", "admin.log", TRANSACTION_FIELDS)
    # провайдер виконав замовлення, а локальний запис не збережено
    _file_logger("[RECONCILIATION_REQUIRED]", "reconciliation.log", RECONCILIATION_FIELDS)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
