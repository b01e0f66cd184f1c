import logging

import uvicorn

from context_proxy.config import ProxyConfig

logger = logging.getLogger("uvicorn.error")


def log_startup_banner(config: ProxyConfig) -> None:
    compression = config.compression
    logger.info(f"[Proxy] {config.service_name} listening on {config.host}:{config.port}")
    logger.info(f"[Proxy] Upstream: {config.upstream_base_url}")
    logger.info(
        f"[Proxy] Max messages: {compression.max_context_messages}, "
        f"preserve recent: {compression.preserve_recent_messages}, "
        f"chunk size: {compression.chunk_size}, "
        f"aggressive above: {compression.aggressive_threshold}, "
        f"emergency tokens: {compression.emergency_token_limit}"
    )
    logger.info(
        f"[Proxy] Smart compression: {compression.smart_compression} "
        f"(summary model {compression.summary_model})"
    )
    logger.info(
        f"[Proxy] Format enforcement: {config.style.enforce_format} "
        f"({config.style.strictness.value}), show reasoning: {config.show_reasoning}"
    )


def main() -> None:
    config = ProxyConfig.from_env()
    logging.basicConfig(level=logging.INFO)
    log_startup_banner(config)
    uvicorn.run("context_proxy.server:app", host=config.host, port=config.port)


if __name__ == "__main__":
    main()
