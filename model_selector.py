"""
模型选择列表
============

维护 {显示名, 模型ID} 列表；选择变化时通知订阅者（不等待加载完成）。
"""

import os
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from loguru import logger


@dataclass(frozen=True)
class ModelEntry:
    display_name: str
    model_id: str


def display_name_for(path: str) -> str:
    """low-poly_test_dummy.obj → Low Poly Test Dummy"""
    stem = os.path.splitext(os.path.basename(path))[0]
    words = stem.replace('-', ' ').replace('_', ' ').split()
    return ' '.join(w.capitalize() for w in words) or stem


class ModelSelector:
    """模型列表 + selectionChanged 通知"""

    def __init__(self, entries: Iterable[ModelEntry] = ()):
        self.entries: List[ModelEntry] = list(entries)
        self.current: Optional[str] = None
        self._listeners: List[Callable[[str], None]] = []

    @classmethod
    def from_directory(cls, model_dir: str, extensions=('.obj',)) -> "ModelSelector":
        """扫描目录下的模型文件"""
        if not os.path.isdir(model_dir):
            logger.warning(f"Model directory not found: {model_dir}")
            return cls()

        files = sorted(f for f in os.listdir(model_dir) if f.lower().endswith(tuple(extensions)))
        entries = [ModelEntry(display_name_for(f), os.path.join(model_dir, f)) for f in files]
        logger.info(f"Loaded {len(entries)} models from {model_dir}")
        return cls(entries)

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """注册回调，返回取消订阅函数"""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def find(self, model_id: str) -> Optional[ModelEntry]:
        return next((e for e in self.entries if e.model_id == model_id), None)

    def select(self, model_id: str) -> None:
        if self.find(model_id) is None:
            raise KeyError(f"unknown model: {model_id}")
        self.current = model_id
        logger.info(f"Current model updated to: {model_id}")
        for callback in list(self._listeners):
            callback(model_id)

    def select_index(self, index: int) -> None:
        self.select(self.entries[index].model_id)

    def __len__(self):
        return len(self.entries)
