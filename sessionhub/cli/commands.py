"""
CLI 命令模块 - sessionhub 的命令行入口。

命令：
- onboard：生成默认配置文件和数据目录
- gateway：启动核心服务（事件总线 + 会话管理器 + 健康巡检 + 清理任务 + 转码缓存）
- status：查看配置、数据目录和 ffmpeg 发现结果

技术栈：
- Typer：CLI 框架
- Rich：终端美化输出（表格、颜色）

二开提示：
- HTTP / Socket 推送层可以在 gateway 中通过 manager.subscribe() 接入
- gateway 是最完整的启动入口，包含了所有服务的编排逻辑
"""

import asyncio
import signal
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from sessionhub import __logo__, __version__

app = typer.Typer(
    name="sessionhub",
    help=f"{__logo__} sessionhub - Multi-tenant messaging session host",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} sessionhub v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """sessionhub CLI 根命令回调。"""
    pass


def _configure_logging(verbose: bool) -> None:
    """替换 loguru 默认 sink；--verbose 时输出 DEBUG 级别日志。"""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 sessionhub 配置。

    执行流程：
    1. 在 ~/.sessionhub/ 下创建默认配置文件 config.json
    2. 创建会话数据目录和转码缓存目录
    3. 打印后续操作指引
    """
    from sessionhub.config.loader import get_config_path, save_config
    from sessionhub.config.schema import Config
    from sessionhub.utils.helpers import ensure_dir

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    ensure_dir(config.sessions_path)
    ensure_dir(config.audio_cache_path)
    console.print(f"[green]✓[/green] Created data directory at {config.data_path}")

    console.print(f"\n{__logo__} sessionhub is ready!")
    console.print("\nNext steps:")
    console.print("  1. Point [cyan]engine.bridgeUrl[/cyan] in the config at your automation bridge")
    console.print("  2. Start: [cyan]sessionhub gateway[/cyan]")


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 sessionhub 核心服务。

    编排顺序：
    1. 加载配置，创建事件总线并启动分发器
    2. 发现 ffmpeg，创建转码缓存
    3. 创建会话管理器（引擎为 Bridge 引擎）
    4. 启动健康巡检和清理任务
    5. 等待中断信号，然后依次停止服务并销毁所有会话
    """
    from sessionhub.bus.queue import EventBus
    from sessionhub.config.loader import load_config
    from sessionhub.engine.bridge import bridge_engine_factory
    from sessionhub.session.manager import SessionManager
    from sessionhub.supervisor.cleanup import CleanupService
    from sessionhub.supervisor.health import HealthSupervisor
    from sessionhub.transcode.cache import TranscodeCache

    _configure_logging(verbose)
    config = load_config()

    console.print(f"{__logo__} Starting sessionhub gateway...")

    async def run():
        bus = EventBus()
        bus.start()

        cache = TranscodeCache.from_config(config)
        await cache.transcoder.detect()

        manager = SessionManager(
            config,
            bus,
            bridge_engine_factory(config.engine.bridge_url, config.engine.bridge_token),
        )
        supervisor = HealthSupervisor(manager, config.supervisor)
        cleanup = CleanupService(manager, cache, config.supervisor)

        async def log_event(event):
            logger.debug(f"[{event.session_id}] → {event.event} {event.payload}")

        bus.subscribe_all(log_event)

        console.print(f"[green]✓[/green] Bridge: {config.engine.bridge_url}")
        if cache.available:
            console.print(f"[green]✓[/green] ffmpeg: {cache.transcoder.path}")
        else:
            console.print("[yellow]Warning: ffmpeg not found, audio conversion disabled[/yellow]")
        console.print(
            f"[green]✓[/green] Health check: every {config.supervisor.health_check_interval_s}s"
        )

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass

        await supervisor.start()
        await cleanup.start()
        try:
            await stop.wait()
        finally:
            console.print("\nShutting down...")
            supervisor.stop()
            cleanup.stop()
            await manager.shutdown()
            await bus.join()
            await bus.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


# ============================================================================
# Status
# ============================================================================


@app.command()
def status():
    """
    显示 sessionhub 状态。

    展示内容：
    - 配置文件路径和状态
    - 数据目录、会话目录、转码缓存目录
    - Bridge 地址
    - ffmpeg 发现结果
    """
    from sessionhub.config.loader import get_config_path, load_config
    from sessionhub.transcode.cache import TranscodeCache

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} sessionhub Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")

    table = Table(title="Paths")
    table.add_column("Item", style="cyan")
    table.add_column("Path", style="yellow")
    table.add_column("Exists", style="green")
    for label, path in (
        ("Data", config.data_path),
        ("Sessions", config.sessions_path),
        ("Audio cache", config.audio_cache_path),
    ):
        table.add_row(label, str(path), "✓" if path.exists() else "✗")
    console.print(table)

    console.print(f"Bridge: {config.engine.bridge_url}")
    console.print(f"Gateway: {config.gateway.host}:{config.gateway.port}")

    cache = TranscodeCache.from_config(config)
    ffmpeg_path = asyncio.run(cache.transcoder.detect())
    if ffmpeg_path:
        console.print(f"ffmpeg: [green]✓ {ffmpeg_path}[/green]")
    else:
        console.print("ffmpeg: [red]✗ not found[/red] (audio conversion disabled)")


if __name__ == "__main__":
    app()
