"""Feishu/Lark document downloader and Bitable exporter."""

__version__ = "0.1.0"
