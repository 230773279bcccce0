"""
导出端：把截取产物写到磁盘

写入失败时直接抛出 OSError，由截取管线统一包装为 ExportFailure。
"""

import os

from loguru import logger


class FileExportSink:
    """按产物自带的文件名保存到 output_dir"""

    def __init__(self, output_dir: str = "."):
        self.output_dir = output_dir

    def path_for(self, artifact) -> str:
        return os.path.join(self.output_dir, artifact.filename)

    def save(self, artifact) -> str:
        path = self.path_for(artifact)
        os.makedirs(self.output_dir or '.', exist_ok=True)
        with open(path, 'wb') as f:
            f.write(artifact.payload)
        logger.debug(f"Saved {artifact.format.value} ({len(artifact.payload)} bytes) -> {path}")
        return path
