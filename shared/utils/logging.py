import logging

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logger(name: str = "trading", level: int | str = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)
    # 同名 logger 只挂一次 handler，否则每次构造 engine 都会重复打印
    if not any(getattr(h, "_submarine", False) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        ch._submarine = True  # type: ignore[attr-defined]
        logger.addHandler(ch)
    return logger
