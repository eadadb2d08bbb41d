"""Download docx documents, wiki spaces and drive folders as Markdown."""

import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich.console import Console

from ..models.config import OutputSettings, sanitize_filename
from .blocks import BlockTree
from .client import FeishuAPIError, FeishuClient
from .fingerprint import document_fingerprint, revision_fingerprint
from .markdown import MarkdownRenderer, mention_user_ids
from .url_parser import (
    UrlParseError,
    build_document_url,
    get_site_prefix,
    parse_document_url,
    parse_folder_url,
    parse_wiki_space_url,
)


console = Console()

WIKI_SPACE_WORKERS = 10


class DownloadError(Exception):
    """Raised when a document cannot be downloaded."""
    pass


def resolve_docx_token(client: FeishuClient, url: str) -> str:
    """Get the docx token for a docx or wiki page URL.

    Raises:
        DownloadError: For legacy documents and non-docx wiki nodes
    """
    try:
        doc_type, token = parse_document_url(url)
    except UrlParseError as e:
        raise DownloadError(str(e)) from e

    if doc_type == "docx":
        return token
    if doc_type == "wiki":
        node = client.get_wiki_node(token)
        obj_type = node.get("obj_type", "")
        if obj_type != "docx":
            raise DownloadError(f"Unsupported wiki node type '{obj_type}', only docx pages can be downloaded")
        return node.get("obj_token", "")
    if doc_type == "docs":
        raise DownloadError("Legacy 'docs' documents are not supported, convert the document to docx first")
    raise DownloadError(f"Unsupported document type '{doc_type}'")


@dataclass
class DownloadResult:
    """A document written to disk."""

    file_name: str  # Relative to the output directory
    title: str
    revision_id: str
    content_hash: str
    images: int = 0


class DocumentDownloader:
    """Fetches docx content and writes Markdown files."""

    def __init__(self, client: FeishuClient, settings: OutputSettings | None = None) -> None:
        """Initialize the downloader.

        Args:
            client: Feishu API client
            settings: Output behavior (file naming, images, raw dumps)
        """
        self.client = client
        self.settings = settings or OutputSettings()
        self._user_names: dict[str, str] = {}

    def _resolve_mentions(self, blocks: list[dict[str, Any]]) -> dict[str, str]:
        names: dict[str, str] = {}
        for user_id in mention_user_ids(blocks):
            if user_id not in self._user_names:
                try:
                    self._user_names[user_id] = self.client.get_user_name(user_id)
                except FeishuAPIError:
                    self._user_names[user_id] = ""
            if self._user_names[user_id]:
                names[user_id] = self._user_names[user_id]
        return names

    def _download_images(self, markdown: str, tokens: list[str], image_dir: Path, output_dir: Path) -> tuple[str, int]:
        """Fetch images and point the Markdown at the local copies."""
        count = 0
        for token in tokens:
            try:
                path = self.client.download_media(token, image_dir)
            except FeishuAPIError as e:
                console.print(f"[yellow]Warning: failed to download image {token}: {e}[/yellow]")
                continue
            relative = path.relative_to(output_dir).as_posix()
            markdown = markdown.replace(f"]({token})", f"]({relative})")
            count += 1
        return markdown, count

    def download_document(
        self,
        url: str,
        output_dir: Path,
        doc_name: str | None = None,
        skip_images: bool = False,
        use_original_title: bool = False,
    ) -> DownloadResult:
        """Download one docx (or wiki page) to a Markdown file.

        Args:
            url: Document or wiki page URL
            output_dir: Directory to write into
            doc_name: Configured name used for the file name
            skip_images: Keep image tokens instead of downloading files
            use_original_title: Name the file after the remote title

        Returns:
            DownloadResult describing the written file
        """
        token = resolve_docx_token(self.client, url)
        document, blocks = self.client.get_docx_content(token)
        title = document.get("title") or ""

        if use_original_title and title:
            base_name = sanitize_filename(title)
        elif doc_name:
            base_name = sanitize_filename(doc_name)
        elif self.settings.title_as_filename and title:
            base_name = sanitize_filename(title)
        else:
            base_name = token

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        renderer = MarkdownRenderer(self._resolve_mentions(blocks))
        markdown = renderer.render(document, blocks)

        images = 0
        if not (skip_images or self.settings.skip_image_download):
            image_tokens = BlockTree(blocks).image_tokens()
            if image_tokens:
                markdown, images = self._download_images(markdown, image_tokens, output_dir / base_name, output_dir)

        file_name = f"{base_name}.md"
        (output_dir / file_name).write_text(markdown, encoding="utf-8")

        if self.settings.dump:
            dump_path = output_dir / f"{token}.json"
            with open(dump_path, "w", encoding="utf-8") as f:
                json.dump({"document": document, "blocks": blocks}, f, indent=2, ensure_ascii=False)
                f.write("\n")

        return DownloadResult(
            file_name=file_name,
            title=title,
            revision_id=revision_fingerprint(document),
            content_hash=document_fingerprint(document, blocks),
            images=images,
        )

    # -------------------------------------------------------------------------
    # Batch downloads
    # -------------------------------------------------------------------------

    def _run_jobs(self, jobs: list[tuple[str, Path]], workers: int) -> list[str]:
        """Download (url, directory) pairs concurrently.

        Returns:
            Paths of written files; failures are printed and skipped
        """
        written: list[str] = []
        if not jobs:
            return written

        with ThreadPoolExecutor(max_workers=max(workers, 1)) as executor:
            futures = {
                executor.submit(
                    self.download_document,
                    url,
                    directory,
                    None,
                    False,
                    True,
                ): (url, directory)
                for url, directory in jobs
            }
            for future in as_completed(futures):
                url, directory = futures[future]
                try:
                    result = future.result()
                except (DownloadError, FeishuAPIError, OSError) as e:
                    console.print(f"[red]Failed to download {url}: {e}[/red]")
                    continue
                written.append(str(directory / result.file_name))
                console.print(f"  [green]Downloaded[/green] {directory / result.file_name}")
        return written

    def download_folder(self, url: str, output_dir: Path, workers: int = 1) -> list[str]:
        """Download every docx in a drive folder, recursing into sub-folders."""
        try:
            folder_token = parse_folder_url(url)
        except UrlParseError as e:
            raise DownloadError(str(e)) from e

        prefix = get_site_prefix(url)
        jobs: list[tuple[str, Path]] = []
        self._collect_folder_jobs(prefix, folder_token, Path(output_dir), jobs)
        return self._run_jobs(jobs, workers)

    def _collect_folder_jobs(self, prefix: str, folder_token: str, directory: Path, jobs: list[tuple[str, Path]]) -> None:
        for item in self.client.list_folder_files(folder_token):
            item_type = item.get("type", "")
            name = item.get("name", "")
            token = item.get("token", "")
            if item_type == "folder":
                self._collect_folder_jobs(prefix, token, directory / sanitize_filename(name), jobs)
            elif item_type == "docx":
                jobs.append((item.get("url") or build_document_url(prefix, "docx", token), directory))

    def download_wiki_space(self, url: str, output_dir: Path, workers: int = WIKI_SPACE_WORKERS) -> list[str]:
        """Download every docx page of a wiki space, mirroring its tree."""
        try:
            prefix, space_id = parse_wiki_space_url(url)
        except UrlParseError as e:
            raise DownloadError(str(e)) from e

        space_name = self.client.get_wiki_space_name(space_id) or space_id
        root = Path(output_dir) / sanitize_filename(space_name)
        jobs: list[tuple[str, Path]] = []
        self._collect_wiki_jobs(prefix, space_id, None, root, jobs)
        return self._run_jobs(jobs, workers)

    def _collect_wiki_jobs(
        self,
        prefix: str,
        space_id: str,
        parent_token: str | None,
        directory: Path,
        jobs: list[tuple[str, Path]],
    ) -> None:
        for node in self.client.list_wiki_nodes(space_id, parent_token):
            if node.get("obj_type") == "docx":
                jobs.append((build_document_url(prefix, "wiki", node.get("node_token", "")), directory))
            if node.get("has_child"):
                child_dir = directory / sanitize_filename(node.get("title") or node.get("node_token", ""))
                self._collect_wiki_jobs(prefix, space_id, node.get("node_token"), child_dir, jobs)
