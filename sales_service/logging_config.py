"""
Sales Service — ログ設定

標準ライブラリの logging を使う。各モジュールは
logging.getLogger(__name__) でロガーを取得するだけでよい。

LOG_FORMAT=json のときは structlog の ProcessorFormatter で 1 行 1 JSON にする（ログ収集基盤向け）。
"""

import logging
import sys

import structlog


def _add_service(service_name: str):
    def processor(logger, method_name, event_dict):
        event_dict["service"] = service_name
        return event_dict

    return processor


def json_formatter(service_name: str) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _add_service(service_name),
            structlog.processors.format_exc_info,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(default=str),
        ],
    )


def configure_logging(level: str = "INFO", fmt: str = "text", service_name: str = "sales-service") -> None:
    """ルートロガーにハンドラを 1 つだけ設定する（多重登録しない）。"""
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(json_formatter(service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())
