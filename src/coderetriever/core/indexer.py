"""
Smart Code Retriever Indexing Pipeline

Crawls a directory, parses Python sources into fragments with
:class:`PythonFragmentParser`, and builds the in-memory
:class:`CodeIndex`.  Nothing is written to disk: the index lives only
as long as the process (or client instance) that built it.

Two-phase build:

1. ``CodeIndex(fragments)`` builds every lookup structure.
2. :class:`EmbeddingIndexer` (optional) computes vectors in fixed-size
   batches and attaches each successful batch through
   :meth:`CodeIndex.finalize_embeddings`.  A failed batch is counted and
   skipped; vectors from earlier batches stay attached.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Tuple

from tqdm import tqdm

from coderetriever.core.config import RetrieverConfig
from coderetriever.core.engine import (
    CodeFragment,
    EmbeddingProvider,
    IndexResult,
    NullEmbeddingProvider,
    scan_directory,
    validate_vectors,
)
from coderetriever.core.index import CodeIndex
from coderetriever.core.parser import PythonFragmentParser
from coderetriever.exceptions import ParseError, ProviderError

logger = logging.getLogger(__name__)


# =============================================================================
# Embedding phase
# =============================================================================

class EmbeddingIndexer:
    """
    Computes fragment embeddings in batches and attaches them to an index.

    The text embedded for each fragment is its
    :meth:`~CodeFragment.to_context_string`, the same block later sent to
    the LLM as context.
    """

    def __init__(self, provider: EmbeddingProvider, batch_size: int = 100,
                 show_progress: bool = False):
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        self.provider = provider
        self.batch_size = batch_size
        self.show_progress = show_progress
        self.batches_failed = 0

    def embed_index(self, index: CodeIndex) -> int:
        """
        Embed every fragment of *index* that has no vector yet.

        Returns the number of fragments that received a vector.  Must not
        run while queries are being served.
        """
        self.batches_failed = 0
        if not self.provider.is_available():
            logger.warning("Embedding provider is not available; skipping embedding phase")
            return 0

        pending = [f for f in index.all_fragments() if not f.has_embedding]
        if not pending:
            return 0

        batches = [
            pending[i:i + self.batch_size]
            for i in range(0, len(pending), self.batch_size)
        ]
        logger.info(f"Embedding {len(pending)} fragments in {len(batches)} batches")

        attached = 0
        for batch_no, batch in enumerate(
            tqdm(batches, desc="Embedding", unit="batch", disable=not self.show_progress),
            start=1,
        ):
            try:
                attached += self._embed_batch(batch, index)
            except ProviderError as e:
                self.batches_failed += 1
                logger.error(f"Embedding batch {batch_no}/{len(batches)} failed: {e}")

        logger.info(
            f"Attached {attached} embeddings "
            f"({self.batches_failed} failed batch{'es' if self.batches_failed != 1 else ''})"
        )
        return attached

    def _embed_batch(self, batch: List[CodeFragment], index: CodeIndex) -> int:
        texts = [fragment.to_context_string() for fragment in batch]
        try:
            raw = self.provider.embed(texts)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Embedding request failed: {e}") from e

        vectors = validate_vectors(raw, expected=len(batch))
        return index.finalize_embeddings(
            {fragment.id: vector for fragment, vector in zip(batch, vectors)}
        )


# =============================================================================
# Indexing Pipeline
# =============================================================================

class IndexingPipeline:
    """
    Orchestrates scanning, parsing, index construction and (optionally)
    the embedding phase.

    Args:
        root_dir: Directory to index.
        config: Settings for file discovery, worker count and embeddings.
        embedding_provider: Capability used when ``config.use_embeddings``
            is set.  Defaults to a disabled provider.
        show_progress: Render tqdm progress bars.
    """

    def __init__(self, root_dir: Path, config: RetrieverConfig | None = None,
                 embedding_provider: EmbeddingProvider | None = None,
                 show_progress: bool = True):
        self.root_dir = Path(root_dir)
        self.config = config or RetrieverConfig.from_env()
        self.embedding_provider = embedding_provider or NullEmbeddingProvider()
        self.show_progress = show_progress
        self.parser = PythonFragmentParser()
        self.stats: Dict[str, int] = {
            "files_scanned": 0,
            "files_parsed": 0,
            "parse_errors": 0,
        }

    def run(self) -> Tuple[CodeIndex, IndexResult]:
        """
        Execute the pipeline.

        Steps:
          1. Scan for source files
          2. Parse files concurrently into fragments
          3. Build the in-memory index
          4. Attach embeddings (only when enabled)
        """
        logger.info("─" * 60)
        logger.info("  CODE RETRIEVER — Indexer")
        logger.info("─" * 60)
        logger.info(f"  Root : {self.root_dir}")

        # ── Step 1: Scan for source files ────────────────────────
        logger.info("[1/4] Scanning for source files...")
        source_files = scan_directory(self.root_dir, self.config)
        self.stats["files_scanned"] = len(source_files)
        logger.info(f"  Found {len(source_files):,} source files")

        # ── Step 2: Parse ────────────────────────────────────────
        logger.info(f"[2/4] Parsing files ({self.config.max_workers} workers)...")
        fragments = self._parse_all(source_files)

        # ── Step 3: Build index ──────────────────────────────────
        logger.info("[3/4] Building index...")
        index = CodeIndex(
            fragments,
            resolve_dependency_names=self.config.resolve_dependency_names,
        )

        # ── Step 4: Embeddings ───────────────────────────────────
        batches_failed = 0
        if self.config.use_embeddings:
            logger.info("[4/4] Computing embeddings...")
            embedder = EmbeddingIndexer(
                self.embedding_provider,
                batch_size=self.config.embedding_batch_size,
                show_progress=self.show_progress,
            )
            embedder.embed_index(index)
            batches_failed = embedder.batches_failed
        else:
            logger.info("[4/4] Embeddings disabled")

        result = IndexResult(
            files_scanned=self.stats["files_scanned"],
            files_parsed=self.stats["files_parsed"],
            parse_errors=self.stats["parse_errors"],
            fragments_total=index.size(),
            fragments_by_kind=index.kind_counts(),
            fragments_embedded=index.embedded_count(),
            embedding_batches_failed=batches_failed,
            embeddings_enabled=self.config.use_embeddings,
            root_dir=str(self.root_dir),
        )
        logger.info(
            f"Indexed {result.fragments_total:,} fragments from "
            f"{result.files_parsed:,} files ({result.parse_errors} errors)"
        )
        return index, result

    def _parse_all(self, source_files: List[Path]) -> List[CodeFragment]:
        """Parse files in a thread pool; results are merged in file order."""
        per_file: Dict[Path, List[CodeFragment]] = {}

        with tqdm(total=len(source_files), desc="Parsing files", unit="file",
                  disable=not self.show_progress) as pbar:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                futures = {
                    executor.submit(self.parser.parse_file, file_path, self.root_dir): file_path
                    for file_path in source_files
                }

                for future in as_completed(futures):
                    file_path = futures[future]
                    try:
                        per_file[file_path] = future.result()
                        self.stats["files_parsed"] += 1
                    except ParseError as e:
                        logger.warning(str(e))
                        self.stats["parse_errors"] += 1
                    except Exception as e:
                        logger.error(f"Error processing {file_path}: {e}")
                        self.stats["parse_errors"] += 1
                    finally:
                        pbar.update(1)

        fragments: List[CodeFragment] = []
        for file_path in source_files:
            fragments.extend(per_file.get(file_path, []))
        return fragments
