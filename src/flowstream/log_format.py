import logging

RESET = "\033[0m"
DIM = "\033[2m"
BOLD = "\033[1m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
MAGENTA = "\033[35m"

LEVEL_COLORS = {
    logging.DEBUG: DIM,
    logging.INFO: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED + BOLD,
}


class ColoredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, "")
        level = record.levelname
        time = self.formatTime(record, self.datefmt)
        name = record.name.split(".")[-1]
        msg = record.getMessage()

        if ("Session" in msg or "Status:" in msg) and "->" in msg:
            msg = f"{BOLD}{CYAN}{msg}{RESET}"
        elif msg.startswith("Committed [USER]"):
            msg = f"{BOLD}{GREEN}{msg}{RESET}"
        elif msg.startswith("Committed [SYSTEM]"):
            msg = f"{BOLD}{MAGENTA}{msg}{RESET}"
        elif msg.startswith("Live:"):
            msg = f"{CYAN}{msg}{RESET}"
        elif "Reconnect" in msg:
            msg = f"{BOLD}{YELLOW}{msg}{RESET}"
        elif record.levelno == logging.DEBUG:
            msg = f"{DIM}{msg}{RESET}"
        elif record.levelno >= logging.WARNING:
            msg = f"{color}{msg}{RESET}"

        return f"{DIM}{time}{RESET} {color}{level:<5}{RESET} {DIM}{name:<16}{RESET} {msg}"


def configure_logging(verbose: bool = False, log_file: str = "") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    handlers: list[logging.Handler] = [handler]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers, force=True)

    for noisy in ("websockets", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.INFO if verbose else logging.WARNING)
