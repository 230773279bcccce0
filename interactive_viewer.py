#!/usr/bin/env python3
"""
交互式三维场景查看器
====================

功能：
1. 左侧模型列表：拖到画布上（或双击）切换模型
2. 鼠标拖拽旋转视角
3. 切换截取预设（遮罩 / 深度灰度 / 两倍分辨率遮罩）
4. "Capture Depth" 导出 depth-map.json 和 depth-map.png

依赖：
- scene_host.py, depth_capture.py
- numpy, PIL, tkinter (标准库)
"""

import argparse
import os
import time
import tkinter as tk
from tkinter import messagebox, ttk

from loguru import logger
from PIL import Image, ImageTk

from capture_errors import CaptureError, ExportFailure
from depth_capture import DepthCapturePipeline
from export_sink import FileExportSink
from model_selector import ModelEntry, ModelSelector
from scene_graph import PerspectiveCamera, make_placeholder
from scene_host import SceneHost
from settings import (DEFAULT_MODELS, PRESETS, ViewerSettings, add_capture_arguments, save_settings,
                      settings_from_args, setup_logging)

TICK_MS = 33
VIEWER_CONFIG = "viewer_config.json"


class DepthViewerApp:
    def __init__(self, root, settings: ViewerSettings):
        self.root = root
        self.root.title("3D Models - Depth Capture")
        self.root.geometry("1100x640")
        self.settings = settings

        # --- 后端初始化 ---
        camera = PerspectiveCamera(fov=settings.fov, position=settings.camera_position)
        self.host = SceneHost(settings.display_width, settings.display_height,
                              camera=camera, model_scale=settings.model_scale)
        self.host.set_model(make_placeholder())
        self.selector = self._load_model_list()
        self.selector.subscribe(self.host.on_selection_changed)
        self.sink = FileExportSink(settings.capture.output_dir)
        self.pipeline = None
        self._build_pipeline()

        # 交互状态
        self.last_mouse = [0, 0]
        self.drag_index = None
        self.dirty = True

        self._setup_ui()

        if len(self.selector):
            self.selector.select_index(0)
        self.root.after(TICK_MS, self._tick)

    def _load_model_list(self) -> ModelSelector:
        """优先扫描模型目录，否则使用默认列表中存在的文件"""
        selector = ModelSelector.from_directory(self.settings.model_dir)
        if len(selector):
            return selector
        entries = [ModelEntry(name, path) for name, path in DEFAULT_MODELS if os.path.exists(path)]
        return ModelSelector(entries)

    def _build_pipeline(self):
        """编码方式在创建管线时确定，切换预设时重建"""
        if self.pipeline is not None:
            self.pipeline.dispose()
        self.pipeline = DepthCapturePipeline(self.host, self.settings.capture.to_config(), self.sink)

    def _setup_ui(self):
        """构建界面布局"""
        # 1. 左侧模型列表
        nav = tk.Frame(self.root, bg="#333", width=250)
        nav.pack(side=tk.LEFT, fill=tk.Y)
        tk.Label(nav, text="3D Models", bg="#333", fg="#fff",
                 font=("Arial", 16, "bold")).pack(anchor=tk.W, padx=20, pady=(20, 10))
        self.list_models = tk.Listbox(nav, bg="#444", fg="#fff", selectbackground="#666",
                                      activestyle="none", borderwidth=0, highlightthickness=0,
                                      font=("Arial", 12), width=24)
        self.list_models.pack(fill=tk.BOTH, expand=True, padx=20, pady=(0, 20))
        for entry in self.selector.entries:
            self.list_models.insert(tk.END, entry.display_name)
        # 拖放到画布
        self.list_models.bind("<ButtonPress-1>", self._on_list_press)
        self.list_models.bind("<ButtonRelease-1>", self._on_list_release)
        self.list_models.bind("<Double-Button-1>", self._on_list_double)

        # 2. 右侧控制栏
        control_frame = ttk.LabelFrame(self.root, text="Depth Capture", padding=10)
        control_frame.pack(side=tk.RIGHT, fill=tk.Y, padx=10, pady=10, ipadx=5)

        ttk.Label(control_frame, text="Capture Preset:").pack(anchor=tk.W, pady=(0, 5))
        self.combo_preset = ttk.Combobox(control_frame, values=sorted(PRESETS), state="readonly")
        self.combo_preset.set(self._current_preset())
        self.combo_preset.pack(fill=tk.X, pady=(0, 15))
        self.combo_preset.bind("<<ComboboxSelected>>", self._on_preset_select)

        self.lbl_info = ttk.Label(control_frame, text="Ready", foreground="gray")
        self.lbl_info.pack(fill=tk.X, pady=(20, 0))

        ttk.Button(control_frame, text="Capture Depth", command=self._capture).pack(side=tk.BOTTOM, fill=tk.X)
        ttk.Button(control_frame, text="Reset View", command=self._reset_view).pack(side=tk.BOTTOM, fill=tk.X, pady=5)

        # 3. 中间画布
        canvas_frame = tk.Frame(self.root, bg="#000")
        canvas_frame.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)
        self.canvas = tk.Canvas(canvas_frame, bg="#000", highlightthickness=0,
                                width=self.settings.display_width, height=self.settings.display_height)
        self.canvas.pack(fill=tk.BOTH, expand=True)

        self.canvas.bind("<Button-1>", self._on_mouse_down)
        self.canvas.bind("<B1-Motion>", self._on_mouse_drag)
        self.canvas.bind("<Configure>", self._on_canvas_resize)

    def _current_preset(self) -> str:
        capture = self.settings.capture
        for name, preset in PRESETS.items():
            if (preset["mode"], preset["background"], preset["resolution_scale"]) == \
                    (capture.mode, capture.background, capture.resolution_scale):
                return name
        return ""

    # --- 模型列表 ---

    def _on_list_press(self, event):
        self.drag_index = self.list_models.nearest(event.y)

    def _on_list_release(self, event):
        index, self.drag_index = self.drag_index, None
        if index is None or index < 0:
            return
        # 只有放到画布上才切换模型
        if self.root.winfo_containing(event.x_root, event.y_root) is self.canvas:
            self.selector.select_index(index)

    def _on_list_double(self, event):
        selection = self.list_models.curselection()
        if selection:
            self.selector.select_index(selection[0])

    def _on_preset_select(self, event=None):
        name = self.combo_preset.get()
        try:
            self.settings.capture.apply_preset(name)
            self._build_pipeline()
        except CaptureError as e:
            messagebox.showerror("Error", str(e))
            return
        self.lbl_info.config(text=f"Preset: {name}")

    # --- 鼠标交互逻辑 ---

    def _on_mouse_down(self, event):
        self.last_mouse = [event.x, event.y]

    def _on_mouse_drag(self, event):
        dx = event.x - self.last_mouse[0]
        dy = event.y - self.last_mouse[1]
        self.last_mouse = [event.x, event.y]
        self.host.orbit(-dx * 0.01, dy * 0.01)
        self.dirty = True

    def _reset_view(self):
        self.host.reset_view()
        self.dirty = True

    def _on_canvas_resize(self, event):
        """显示缓冲跟随画布大小，截取尺寸不变"""
        size = (event.width, event.height)
        if min(size) <= 0 or size == (self.settings.display_width, self.settings.display_height):
            return
        self.settings.display_width, self.settings.display_height = size
        self.host.resize_display(*size)
        self.dirty = True

    # --- 渲染循环 ---

    def _tick(self):
        if self.host.update():
            self.dirty = True
        if self.dirty:
            self.dirty = False
            self._perform_render()
        self.root.after(TICK_MS, self._tick)

    def _perform_render(self):
        t0 = time.time()
        image = self.host.render_display()
        self.tk_img = ImageTk.PhotoImage(Image.fromarray(image))  # 必须保持引用
        self.canvas.delete("all")
        self.canvas.create_image(0, 0, anchor=tk.NW, image=self.tk_img)
        dt = time.time() - t0
        name = self.host.model.name if self.host.model is not None else "-"
        self.lbl_info.config(text=f"{name}: {dt:.3f}s")

    def _capture(self):
        """截取当前视图（使用已提交的场景）"""
        try:
            self.pipeline.capture()
        except ExportFailure as e:
            messagebox.showerror("Export failed", str(e))
            return
        except CaptureError as e:
            logger.error(f"Depth capture failed: {e}")
            messagebox.showerror("Capture failed", str(e))
            return
        output = os.path.abspath(self.sink.output_dir)
        messagebox.showinfo("Saved", f"Depth map saved to:\n{output}")

    def close(self):
        """释放离屏目标，并把当前设置保存到输出目录（可用 --config 重新加载）"""
        self.pipeline.dispose()
        path = os.path.join(self.settings.capture.output_dir, VIEWER_CONFIG)
        try:
            os.makedirs(self.settings.capture.output_dir or '.', exist_ok=True)
            save_settings(self.settings, path)
            logger.info(f"Viewer settings saved: {path}")
        except OSError as e:
            logger.warning(f"Could not save viewer settings to {path}: {e}")
        self.root.destroy()


def main():
    parser = argparse.ArgumentParser(description='交互式深度截取查看器')
    add_capture_arguments(parser)
    try:
        settings = settings_from_args(parser.parse_args())
        settings.capture.to_config()
    except (OSError, ValueError) as e:
        parser.error(str(e))
    setup_logging(settings.log_level, settings.log_file)

    root = tk.Tk()
    style = ttk.Style()
    style.theme_use('clam')

    app = DepthViewerApp(root, settings)
    root.protocol("WM_DELETE_WINDOW", app.close)
    root.mainloop()


if __name__ == "__main__":
    main()
