import logging
import re

# 128/192 hex chars: extended private keys
_PRIVATE_KEY_RE = re.compile(r"\b[0-9a-fA-F]{128}(?:[0-9a-fA-F]{64})?\b")

# Blockfrost project ids
_PROJECT_ID_RE = re.compile(r"\b(mainnet|preprod|preview)[A-Za-z0-9]{32}\b")

# Telegram bot tokens in URLs
_TOKEN_URL_RE = re.compile(r"(https://api\.telegram\.org/bot)(\d+:[A-Za-z0-9_\-]+)")


def mask_secrets(msg: str) -> str:
    msg = _PRIVATE_KEY_RE.sub("***MASKED_KEY***", msg)
    msg = _PROJECT_ID_RE.sub(r"\1***MASKED***", msg)
    msg = _TOKEN_URL_RE.sub(r"\1***MASKED***", msg)
    return msg


class SecretMaskFilter(logging.Filter):
    """
    Masks private keys, Blockfrost project ids and bot tokens in log records.
    """
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True

        masked = mask_secrets(msg)

        if masked != msg:
            record.msg = masked
            record.args = ()

        return True


def install_secret_filter(logger_name: str = "", level: int | None = None) -> None:
    """
    Attach the filter to a logger (root by default) and to its handlers.
    """
    logger = logging.getLogger(logger_name)
    mask = SecretMaskFilter()
    logger.addFilter(mask)
    for handler in logger.handlers:
        handler.addFilter(mask)
    if level is not None:
        logger.setLevel(level)
