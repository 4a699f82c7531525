from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
import inspect, os, functools, time
from pathlib import Path
from typing import Any, Dict

_DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", "1048576"))
_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "3"))
_ARG_REPR_MAX = 160

_CONSOLE_FMT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_FILE_FMT = "%(asctime)s | %(levelname)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _LoggerManager:
    """Consola en el root + un fichero rotativo por módulo en LOG_DIR."""

    def __init__(self) -> None:
        self._configured = False
        self._level = getattr(logging, _DEFAULT_LEVEL, logging.INFO)
        self._module_handlers: Dict[str, logging.Handler] = {}
        self._log_dir = os.getenv("LOG_DIR", "./logs")

    def _ensure(self) -> None:
        if self._configured:
            return
        root = logging.getLogger()
        root.setLevel(self._level)
        if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
            sh = logging.StreamHandler()
            sh.setLevel(self._level)
            sh.setFormatter(logging.Formatter(fmt=_CONSOLE_FMT, datefmt=_DATEFMT))
            root.addHandler(sh)
        Path(self._log_dir).mkdir(parents=True, exist_ok=True)
        self._configured = True

    def set_level(self, level_name: str) -> None:
        """Cambia el nivel global (root + ficheros ya creados) tras cargar Settings."""
        self._ensure()
        self._level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
        logging.getLogger().setLevel(self._level)
        for h in list(logging.getLogger().handlers) + list(self._module_handlers.values()):
            h.setLevel(self._level)

    def setup_logger(self, name: str) -> logging.Logger:
        self._ensure()
        logger = logging.getLogger(name)
        if name in self._module_handlers:
            return logger

        file_path = os.path.join(self._log_dir, f"{name.replace('.', '_').replace('/', '_')}.log")
        try:
            fh = RotatingFileHandler(file_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
        except OSError:
            # sin fichero: el módulo sigue logueando por consola
            return logger
        fh.setLevel(self._level)
        fh.setFormatter(logging.Formatter(fmt=_FILE_FMT, datefmt=_DATEFMT))
        self._module_handlers[name] = fh
        logger.addHandler(fh)
        logger.propagate = True
        return logger


logger_manager = _LoggerManager()


def _safe_repr(value: Any) -> str:
    # nunca volcar la secret key del payer a los logs
    if type(value).__name__ == "Keypair":
        return f"Keypair({value.pubkey()})"
    text = repr(value)
    return text if len(text) <= _ARG_REPR_MAX else text[:_ARG_REPR_MAX] + "…"


def _describe_call(func, args, kwargs) -> str:
    params = [_safe_repr(a) for a in args]
    params += [f"{k}={_safe_repr(v)}" for k, v in kwargs.items()]
    return f"→ {func.__qualname__}({', '.join(params)})"


def log_function(func):
    """Traza a DEBUG entrada, salida y duración; las excepciones se loguean y se relanzan."""
    logger = logger_manager.setup_logger(func.__module__)

    def _done(t0: float) -> None:
        logger.debug(f"← {func.__qualname__} ({(time.perf_counter() - t0) * 1000:.1f} ms)")

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(_describe_call(func, args, kwargs))
            t0 = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.exception(f"✗ {func.__qualname__}: {e}")
                raise
            _done(t0)
            return result
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(_describe_call(func, args, kwargs))
        t0 = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.exception(f"✗ {func.__qualname__}: {e}")
            raise
        _done(t0)
        return result
    return wrapper
