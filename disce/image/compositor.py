"""Fragment compositor.

Merges the base64 fragments returned by multi-image providers into a single
JPEG laid out on a fixed grid (3 columns x 3 rows by default).

Processing flow:
    1. Decode every fragment (strict base64).
    2. Write each to `<scratch>/<request_id>-<index>.jpg`.
    3. Open every scratch file with Pillow and paste it row-major onto an RGB
       canvas sized `columns * cell_width` x `rows * cell_height`, where the
       cell size is the first fragment's size.
    4. Save the canvas to `<scratch>/<request_id>.jpg` at the fixed quality and
       read the encoded bytes back.

Fill policy:
    - Fragments fill cells left to right, top to bottom, from the top-left.
    - Unused cells stay black.
    - A fragment whose size differs from the first is resized to the cell.
    - More fragments than cells is an error.

Temporary files:
    Every fragment file and the merged file are deleted before `compose`
    returns, on success and on every failure path. Deletion errors are logged.

Error handling strategy:
    Any decode, open, merge, or encode error raises `CompositionFailure`. A
    partial image is never returned.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from PIL import Image, UnidentifiedImageError

from disce.core.errors import CompositionFailure


logger = logging.getLogger(__name__)

GRID_BACKGROUND = (0, 0, 0)


class ImageCompositor:
    """Build one JPEG from an ordered sequence of base64 fragments.

    Args:
        scratch_dir: Directory for transient files; created if missing.
        quality: JPEG quality of the composite.
        columns: Grid width in cells.
        rows: Grid height in cells.
    """

    def __init__(self, scratch_dir: str = ".", quality: int = 80, columns: int = 3, rows: int = 3):
        self.scratch_dir = scratch_dir
        self.quality = quality
        self.columns = columns
        self.rows = rows

    @property
    def capacity(self) -> int:
        return self.columns * self.rows

    def fragment_path(self, request_id, index: int) -> str:
        return os.path.join(self.scratch_dir, f"{request_id}-{index}.jpg")

    def output_path(self, request_id) -> str:
        return os.path.join(self.scratch_dir, f"{request_id}.jpg")

    def compose(self, request_id, fragments: list[str]) -> bytes:
        """Return the encoded composite for `fragments`.

        Args:
            request_id: Request identity; keys the scratch file names.
            fragments: Base64 image payloads in display order.

        Returns:
            JPEG bytes of the merged grid.

        Raises:
            CompositionFailure: Empty or oversized input, or any decode,
                merge, or encode error.
        """
        if not fragments:
            raise CompositionFailure(f"[{request_id}] no fragments to compose")
        if len(fragments) > self.capacity:
            raise CompositionFailure(
                f"[{request_id}] {len(fragments)} fragments exceed the "
                f"{self.columns}x{self.rows} grid"
            )

        os.makedirs(self.scratch_dir, exist_ok=True)
        scratch_paths: list[str] = []

        try:
            for index, fragment in enumerate(fragments):
                raw = _decode_fragment(request_id, index, fragment)
                path = self.fragment_path(request_id, index)
                scratch_paths.append(path)
                with open(path, "wb") as f:
                    f.write(raw)

            output = self.output_path(request_id)
            scratch_paths.append(output)
            self._merge(request_id, scratch_paths[:-1], output)

            with open(output, "rb") as f:
                data = f.read()

            logger.info("[%s] Created image from %d fragments", request_id, len(fragments))
            return data

        except CompositionFailure:
            raise
        except OSError as exc:
            raise CompositionFailure(f"[{request_id}] scratch file error: {exc}") from exc
        finally:
            for path in scratch_paths:
                _remove_scratch(request_id, path)

    def _merge(self, request_id, paths: list[str], output: str) -> None:
        canvas = None
        cell_size = None

        for index, path in enumerate(paths):
            try:
                with Image.open(path) as src:
                    tile = src.convert("RGB")
            except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
                raise CompositionFailure(
                    f"[{request_id}] fragment {index} is not a supported image"
                ) from exc

            if canvas is None:
                cell_size = tile.size
                canvas = Image.new(
                    "RGB",
                    (cell_size[0] * self.columns, cell_size[1] * self.rows),
                    GRID_BACKGROUND,
                )
            elif tile.size != cell_size:
                tile = tile.resize(cell_size, Image.LANCZOS)

            column, row = index % self.columns, index // self.columns
            canvas.paste(tile, (column * cell_size[0], row * cell_size[1]))

        try:
            canvas.save(output, format="JPEG", quality=self.quality)
        except (OSError, ValueError) as exc:
            raise CompositionFailure(f"[{request_id}] failed to encode composite: {exc}") from exc


def _decode_fragment(request_id, index: int, fragment) -> bytes:
    if isinstance(fragment, str):
        if not fragment.isascii():
            raise CompositionFailure(f"[{request_id}] fragment {index} is not valid base64")
        fragment = fragment.encode("ascii")
    if not fragment:
        raise CompositionFailure(f"[{request_id}] fragment {index} is empty")
    try:
        return base64.b64decode(fragment, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CompositionFailure(f"[{request_id}] fragment {index} is not valid base64") from exc


def _remove_scratch(request_id, path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("[%s] Failed to remove scratch file %s: %s", request_id, path, exc)
