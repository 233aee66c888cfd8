"""
主程序入口

启动两个并发任务：
1. 对账循环（默认每 30 分钟）
2. REST API 服务
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from . import __version__
from .config import AppConfig, load_config
from .context import AppContext, build_context


def setup_logging(config: AppConfig):
    """
    配置日志

    根日志输出到 stdout，可选追加文件；对账器的逐 key 日志为 DEBUG，
    只有 logging.level 设为 DEBUG 时才会出现。
    """
    log_format = "%(asctime)s [pool-monitor] %(name)s %(levelname)s: %(message)s"
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_path), encoding="utf-8"))

    logging.basicConfig(level=level, format=log_format, handlers=handlers)

    # 链节点 RPC 每轮都会调用，请求日志只在出错时有意义
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def acquire_single_instance_lock(lock_path: Path):
    """
    防止同一台机器上多个实例写同一个缓存库（对账器必须单写者）。

    通过文件锁实现：同一路径下只能有一个进程持锁。跨机器部署需外部协调。
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+b")

    try:
        if os.name == "nt":
            import msvcrt  # type: ignore

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl  # type: ignore

            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        handle.close()
        raise RuntimeError(f"Another Pool Monitor instance is already running (lock: {lock_path})") from e

    handle.seek(0)
    handle.truncate()
    handle.write(str(os.getpid()).encode("utf-8"))
    handle.flush()
    return handle


async def run_api_server(ctx: AppContext):
    """运行仪表盘 API（/overview、/nodes_info、/sync/status）"""
    from .api.app import create_app

    api = ctx.config.api
    server = uvicorn.Server(uvicorn.Config(
        app=create_app(ctx),
        host=api.host,
        port=api.port,
        log_level=ctx.config.logging.level.lower(),
        access_log=False,
    ))
    logging.getLogger(__name__).info(
        f"Dashboard API on http://{api.host}:{api.port} "
        f"(request timeout {api.request_timeout}s, CORS {api.cors_origins})"
    )
    await server.serve()


async def main(config_path: Optional[str] = None, sync_enabled: Optional[bool] = None):
    """
    主函数：启动 API 与对账循环

    Args:
        config_path: 配置文件路径
        sync_enabled: 覆盖 sync.enabled（命令行 --no-sync）
    """
    logger = logging.getLogger(__name__)

    config = load_config(config_path)
    if sync_enabled is not None:
        config.sync.enabled = sync_enabled
    setup_logging(config)
    logger.info("=" * 60)
    logger.info(f"Pool Monitor v{__version__}")
    logger.info("=" * 60)
    logger.info(
        f"Chain node={config.node.endpoint} "
        f"epoch={config.epoch.layers_per_epoch} layers (round opens at +{config.epoch.round_open_offset})"
    )
    logger.info(
        f"Databases: source={config.database.source_path} "
        f"registrations={config.database.registration_path} "
        f"activations={config.database.activation_path} cache={config.database.cache_path}"
    )

    # 单实例锁：缓存库只允许一个写者
    try:
        cache_path = Path(config.database.cache_path)
        lock_handle = acquire_single_instance_lock(cache_path.parent / "pool-monitor.lock")
    except RuntimeError as e:
        logger.error(str(e))
        return

    try:
        ctx = build_context(config)
        ctx.cache.init_schema()

        tasks = [run_api_server(ctx)]
        if config.sync.enabled:
            logger.info(
                f"Synchronizer every {config.sync.interval}s "
                f"(page_size={config.sync.page_size}, concurrency={config.sync.concurrency}, "
                f"aligned={config.sync.align_to_interval})"
            )
            tasks.append(ctx.synchronizer.run_forever())
        else:
            logger.info("Synchronizer disabled, serving cached data only")

        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        lock_handle.close()


def cli():
    """命令行入口"""
    parser = argparse.ArgumentParser(
        prog="pool-monitor",
        description="Pool storage / PoET registration / ATX activation monitor",
    )
    parser.add_argument("-c", "--config", default=None, help="config.yaml 路径")
    parser.add_argument("--no-sync", action="store_true", help="只提供 API，不运行对账循环")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args()

    try:
        asyncio.run(main(args.config, sync_enabled=False if args.no_sync else None))
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
