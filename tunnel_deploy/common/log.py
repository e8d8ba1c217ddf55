# tunnel_deploy/common/log.py
import os, logging
from logging.handlers import RotatingFileHandler
from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)

LOGGER_NAME = "tunnel-deploy"

def setup_logger(name: str, log_dir: str, stream: bool = False):
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    fh = RotatingFileHandler(os.path.join(log_dir, f"{name}.log"), maxBytes=5_000_000, backupCount=5)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    # console output normally goes through the markers below
    if stream:
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)
    return logger

def get_logger():
    return logging.getLogger(LOGGER_NAME)

# One-line markers. Each one mirrors its message into the run log.

def step(msg: str, icon: str = "→"):
    console.print(f"[cyan]{icon}[/cyan] {escape(msg)}")
    get_logger().info(msg)

def ok(msg: str, indent: int = 0):
    console.print(f"{' ' * indent}[green]✓[/green] {escape(msg)}")
    get_logger().info(msg)

def fail(msg: str, indent: int = 0):
    console.print(f"{' ' * indent}[red]✗[/red] {escape(msg)}")
    get_logger().error(msg)

def warn(msg: str, indent: int = 0):
    console.print(f"{' ' * indent}[yellow]⚠[/yellow] {escape(msg)}")
    get_logger().warning(msg)

def info(msg: str, indent: int = 0):
    console.print(f"{' ' * indent}[cyan]ℹ[/cyan] {escape(msg)}")
    get_logger().info(msg)

def section(title: str):
    console.print(f"\n[bold cyan]{escape(title)}[/bold cyan]")
