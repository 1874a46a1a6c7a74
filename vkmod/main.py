# Copyright (c) 2025 sprowii
import signal

from vkmod.bot.loop import BotContext, EventLoop
from vkmod.config import BotConfig
from vkmod.logging_config import log
from vkmod.moderation.storage import create_redis_client
from vkmod.security.data_protection import check_security_config


def main() -> None:
    config = BotConfig.from_env()
    security = check_security_config()
    log.info(
        f"Security config: salt={'yes' if security['hash_salt_configured'] else 'no'}, "
        f"encryption={'yes' if security['encryption_enabled'] else 'no'}"
    )

    context = BotContext.build(config, create_redis_client(config.redis_url))

    def _shutdown(signum, frame):
        log.info(f"Получен сигнал {signum}, останавливаемся")
        context.stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    EventLoop(context).run()


if __name__ == "__main__":
    main()
