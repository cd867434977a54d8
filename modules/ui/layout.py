"""Gradio layout composition for QR generation and scanning."""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

try:
    import gradio as gr
except ImportError:  # pragma: no cover
    gr = None  # type: ignore

from config.settings import AppConfig
from modules.pipelines.camera import CameraScanner
from modules.pipelines.decoder import QRDecodeService
from modules.pipelines.encoder import ErrorCorrection, QREncodeService
from modules.services.history_service import HistoryService
from modules.services.storage_service import JsonFileStorage, KeyValueStorage
from modules.ui.callbacks import build_callbacks


def _level_choices() -> Sequence[Tuple[str, str]]:
    return ErrorCorrection.choices()


def build_services(
    config: AppConfig, storage: Optional[KeyValueStorage] = None
) -> tuple[QREncodeService, QRDecodeService, HistoryService, CameraScanner]:
    """Create the encode, decode, history and camera services from configuration."""
    storage = storage or JsonFileStorage(config.data_dir, quota_bytes=config.storage_quota_bytes)
    history = HistoryService(storage, capacity=config.history_limit)
    history.load_all()
    encoder = QREncodeService(config)
    decoder = QRDecodeService()
    scanner = CameraScanner.from_config(config, decoder)
    return encoder, decoder, history, scanner


def build_app(config: AppConfig, storage: Optional[KeyValueStorage] = None) -> Any:
    """Compose and return the Gradio application."""
    if gr is None:
        raise RuntimeError("Gradio 未安装，请先执行依赖安装。")

    encoder, decoder, history, scanner = build_services(config, storage)
    callbacks_map = build_callbacks(
        config,
        encoder=encoder,
        decoder=decoder,
        history=history,
        scanner=scanner,
    )
    level_choices = list(_level_choices())
    default_level = ErrorCorrection.parse(config.default_error_correction).value

    with gr.Blocks(title="QR Code Assistant") as demo:
        gr.Markdown("## 二维码助手")

        # 生成二维码
        with gr.Tab("生成二维码"):
            with gr.Row():
                with gr.Column():
                    text = gr.Textbox(
                        label="输入内容",
                        value="https://www.example.com",
                        placeholder="输入网址或文本内容",
                    )
                    level = gr.Dropdown(
                        label="二维码类型",
                        choices=level_choices,
                        value=default_level,
                    )
                    generate_btn = gr.Button("生成二维码", variant="primary")
                    status = gr.Markdown("准备就绪。")

                with gr.Column():
                    output_image = gr.Image(label="生成的二维码", type="pil", format="png")

            gr.Markdown("### 生成历史")
            with gr.Row():
                search_generated = gr.Textbox(label="搜索历史记录...", scale=4)
                clear_generated_btn = gr.Button("清空历史", scale=1)
            generated_gallery = gr.Gallery(label="生成历史", columns=4, height="auto", format="png")

            generate_inputs = [text, level]
            generate_outputs = [output_image, status, generated_gallery]
            generate_btn.click(
                fn=callbacks_map["on_generate"],
                inputs=generate_inputs,
                outputs=generate_outputs,
            )
            text.submit(
                fn=callbacks_map["on_generate"],
                inputs=generate_inputs,
                outputs=generate_outputs,
            )
            search_generated.change(
                fn=callbacks_map["on_search_generated"],
                inputs=[search_generated],
                outputs=[generated_gallery],
            )
            clear_generated_btn.click(
                fn=callbacks_map["on_clear_generated"],
                outputs=[generated_gallery, status],
            )

        # 扫描二维码
        with gr.Tab("扫描二维码"):
            with gr.Row():
                with gr.Column():
                    scan_input = gr.Image(
                        label="选择图片文件（也可以直接按 Ctrl+V 粘贴图片）",
                        type="pil",
                        sources=["upload", "clipboard", "webcam"],
                    )
                    with gr.Row():
                        start_camera_btn = gr.Button("启动摄像头")
                        stop_camera_btn = gr.Button("停止摄像头")

                with gr.Column():
                    scan_result = gr.Textbox(label="扫描结果", interactive=False)
                    scan_link = gr.Markdown()
                    scan_status = gr.Markdown("准备就绪。")

            gr.Markdown("### 扫描历史")
            with gr.Row():
                search_scanned = gr.Textbox(label="搜索历史记录...", scale=4)
                clear_scanned_btn = gr.Button("清空历史", scale=1)
            scanned_table = gr.Dataframe(
                headers=["时间", "内容"],
                datatype=["str", "str"],
                interactive=False,
            )

            scan_outputs = [scan_result, scan_link, scan_status, scanned_table]
            scan_input.change(
                fn=callbacks_map["on_decode_image"],
                inputs=[scan_input],
                outputs=scan_outputs,
            )
            start_camera_btn.click(
                fn=callbacks_map["on_start_camera"],
                outputs=scan_outputs,
            )
            stop_camera_btn.click(
                fn=callbacks_map["on_stop_camera"],
                outputs=[scan_status],
            )
            search_scanned.change(
                fn=callbacks_map["on_search_scanned"],
                inputs=[search_scanned],
                outputs=[scanned_table],
            )
            clear_scanned_btn.click(
                fn=callbacks_map["on_clear_scanned"],
                outputs=[scanned_table, scan_status],
            )

        demo.load(
            fn=callbacks_map["on_load_history"],
            outputs=[generated_gallery, scanned_table],
        )

    return demo
