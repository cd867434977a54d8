"""Print the persisted generation and scan histories."""

from config.settings import load_config
from modules.services.history_service import HistoryKind, HistoryService
from modules.services.storage_service import JsonFileStorage


def main() -> None:
    config = load_config()
    history = HistoryService(JsonFileStorage(config.data_dir), capacity=config.history_limit)
    loaded = history.load_all()
    for kind in HistoryKind:
        entries = loaded[kind]
        print(f"== {kind.value} ({len(entries)})")
        for entry in entries:
            artifact = "有图片" if entry.artifact else "无图片"
            print(f"{entry.timestamp.isoformat()}  {entry.content}  [{artifact}]")


if __name__ == "__main__":
    main()
