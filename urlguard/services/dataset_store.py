# urlguard/services/dataset_store.py

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from ..errors import LoadError, LoadErrorKind
from .dataset import Dataset, EntryRecord, Label, Scope, make_entry, normalize_pattern, parse_records
from .url_normalizer import URLNormalizer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class DatasetStore:
    """
    File-backed holder of the active Dataset.

    Readers call snapshot() and get the current immutable version without locking.
    Writers build a new Dataset off to the side and publish it with a single
    reference swap while holding the writer lock, so at most one write runs at a
    time and readers never observe a partial update.
    """

    def __init__(self, path: Optional[PathLike] = None,
                 normalizer: Optional[URLNormalizer] = None,
                 dataset: Optional[Dataset] = None):
        self.path = Path(path) if path is not None else None
        self.normalizer = normalizer or URLNormalizer()
        self._write_lock = threading.Lock()
        self._current: Dataset = dataset if dataset is not None else Dataset.empty()
        self._last_mtime: Optional[float] = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, path: Optional[PathLike] = None) -> Dataset:
        """
        Parse a dataset file into a new Dataset without publishing it.
        Invalid records are collected on dataset.rejected; only an unreadable
        file or malformed JSON raises LoadError.
        """
        file_path = self._resolve(path)
        start_time = time.time()

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise LoadError(LoadErrorKind.PARSE, str(file_path), f"Malformed JSON: {e}")
        except (OSError, UnicodeDecodeError) as e:
            raise LoadError(LoadErrorKind.IO, str(file_path), f"Cannot read dataset: {e}")

        try:
            entries, rejected = parse_records(data, self.normalizer)
        except TypeError as e:
            raise LoadError(LoadErrorKind.PARSE, str(file_path), f"Unexpected dataset layout: {e}")

        dataset = Dataset(entries, rejected=rejected, source_path=str(file_path))

        load_time = (time.time() - start_time) * 1000
        logger.info(f"Dataset loaded from {file_path} in {load_time:.1f}ms: "
                    f"{len(dataset)} entries, {len(rejected)} rejected, "
                    f"{dataset.duplicates} duplicates")
        return dataset

    def reload(self) -> Dataset:
        """
        Load the configured file and publish it.
        On LoadError the previous version stays active and the error is re-raised.
        """
        with self._write_lock:
            mtime = self._file_mtime()
            try:
                dataset = self.load()
            except LoadError as e:
                logger.error(f"Dataset reload failed, keeping version "
                             f"{self._current.version}: {e}")
                raise
            published = self._publish(dataset)
            self._last_mtime = mtime
            return published

    def reload_if_changed(self) -> bool:
        """Reload when the file's modification time moved since the last load"""
        mtime = self._file_mtime()
        if mtime is None or mtime == self._last_mtime:
            return False
        logger.info(f"Dataset file {self.path} changed, reloading...")
        self.reload()
        return True

    # ------------------------------------------------------------------
    # Reading / publishing
    # ------------------------------------------------------------------

    def snapshot(self) -> Dataset:
        return self._current

    def replace(self, dataset: Dataset) -> Dataset:
        with self._write_lock:
            return self._publish(dataset)

    def _publish(self, dataset: Dataset) -> Dataset:
        # Caller must hold the writer lock
        published = dataset.with_version(self._current.version + 1)
        self._current = published
        logger.info(f"Published dataset version {published.version} "
                    f"({len(published)} entries)")
        return published

    # ------------------------------------------------------------------
    # Administrative edits
    # ------------------------------------------------------------------

    def update(self,
               add: Iterable[EntryRecord] = (),
               remove: Iterable[Tuple[str, Scope]] = ()) -> Tuple[Dataset, int]:
        """
        Apply additions and removals on top of the current version.
        Added records override existing entries with the same (pattern, scope).
        Returns the published dataset and the number of entries removed.
        Raises InvalidEntryError before publishing anything if a record is invalid.
        """
        new_entries = [make_entry(record, self.normalizer) for record in add]
        remove_keys = {
            (normalize_pattern(pattern, scope, self.normalizer), scope)
            for pattern, scope in remove
        }

        with self._write_lock:
            current = self._current
            merged = {entry.key: entry for entry in current}

            removed = 0
            for key in remove_keys:
                if key in current:
                    del merged[key]
                    removed += 1
            if not new_entries and not removed:
                return current, 0

            # Overrides replace in place and are not load-time duplicates
            overridden = 0
            for entry in new_entries:
                if entry.key in merged:
                    overridden += 1
                merged[entry.key] = entry

            dataset = Dataset(
                merged.values(),
                rejected=current.rejected,
                source_path=current.source_path,
                duplicates=current.duplicates,
            )
            published = self._publish(dataset)

        logger.info(f"Dataset updated: {len(new_entries) - overridden} added, "
                    f"{overridden} overridden, {removed} removed")
        return published, removed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist(self, path: Optional[PathLike] = None) -> Path:
        """Write the current version to disk atomically, in insertion order"""
        file_path = self._resolve(path)

        with self._write_lock:
            dataset = self._current
            file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = file_path.with_suffix(file_path.suffix + '.tmp')

            try:
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(dataset.to_records(), f, indent=2, ensure_ascii=False)
                    f.write('\n')
                os.replace(tmp_path, file_path)
            except Exception as e:
                tmp_path.unlink(missing_ok=True)
                logger.error(f"Failed to persist dataset to {file_path}: {e}")
                raise

            # Our own write should not trigger a reload of the same content
            if self.path is not None and file_path == self.path:
                self._last_mtime = self._file_mtime()

        logger.info(f"Persisted dataset version {dataset.version} "
                    f"({len(dataset)} entries) to {file_path}")
        return file_path

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the active dataset version"""
        dataset = self._current
        labels = {label.value: 0 for label in Label}
        for entry in dataset:
            labels[entry.label.value] += 1

        return {
            "version": dataset.version,
            "entries": len(dataset),
            "exact_entries": len(dataset.exact_index),
            "domain_entries": len(dataset.domain_index),
            "labels": labels,
            "rejected": len(dataset.rejected),
            "duplicates": dataset.duplicates,
            "loaded_at": dataset.loaded_at,
            "path": str(self.path) if self.path else None,
        }

    def _resolve(self, path: Optional[PathLike]) -> Path:
        if path is not None:
            return Path(path)
        if self.path is None:
            raise ValueError("No dataset path configured")
        return self.path

    def _file_mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime if self.path else None
        except OSError:
            return None
