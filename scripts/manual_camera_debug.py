"""One-off script for checking local camera scanning."""

from config.settings import load_config
from modules.pipelines.camera import CameraScanner
from modules.pipelines.decoder import QRDecodeService
from modules.utils.logging import setup_logging


def main() -> None:
    # 1. 读取真实配置（QR_CAMERA_INDEX 可切换摄像头）
    config = load_config()
    setup_logging(config)
    scanner = CameraScanner.from_config(config, QRDecodeService())

    # 2. 启动扫描，把二维码对准摄像头；Ctrl+C 取消
    handle = scanner.start()
    print(f"正在使用摄像头 {config.camera_index} 扫描...")
    try:
        result = handle.wait()
    except KeyboardInterrupt:
        handle.cancel()
        handle.wait(timeout=2)
        print("已取消扫描。")
        return

    if handle.error is not None:
        print("扫描失败:", handle.error)
    elif result is not None:
        print("扫描结果:", result.text)


if __name__ == "__main__":
    main()
