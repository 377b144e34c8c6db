import os
import pathlib
import tempfile
import mimetypes
from typing import BinaryIO, Tuple, Optional
import logging

LOG = logging.getLogger(__name__)

TEMP_DIR = os.getenv('UPLOAD_TEMP_DIR') or os.path.join(tempfile.gettempdir(), 'cramly-uploads')
MAX_UPLOAD_SIZE_MB = int(os.getenv('MAX_UPLOAD_SIZE_MB', '20'))
MAX_UPLOAD_SIZE_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024
SUPPORTED_UPLOAD_FORMATS = os.getenv('SUPPORTED_UPLOAD_FORMATS', 'pdf,png,jpg,jpeg,webp,txt,md').split(',')
CHUNK_SIZE = 64 * 1024


class FileValidationError(Exception):
    """Raised when an uploaded file is too large or has an unsupported extension."""


class FileHandler:
    def __init__(self, temp_dir: Optional[str] = None):
        self.temp_dir = temp_dir or TEMP_DIR
        pathlib.Path(self.temp_dir).mkdir(parents=True, exist_ok=True)

    def save_upload(self, filename: str, stream: BinaryIO) -> str:
        """Spool an uploaded stream to a temp file that keeps the original extension."""
        if not filename:
            raise FileValidationError('Missing file name')
        suffix = pathlib.Path(filename).suffix.lower()
        tmp = tempfile.NamedTemporaryFile(delete=False, suffix=suffix, dir=self.temp_dir)
        local_path = tmp.name
        written = 0
        try:
            with tmp:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > MAX_UPLOAD_SIZE_BYTES:
                        raise FileValidationError(f'File too large (max {MAX_UPLOAD_SIZE_MB} MB)')
                    tmp.write(chunk)
            valid, err = self.validate_file(local_path)
            if not valid:
                raise FileValidationError(err)
        except Exception:
            self.cleanup_temp_file(local_path)
            raise
        LOG.info('upload_saved', extra={'upload_name': filename, 'size': written})
        return local_path

    def validate_file(self, file_path: str) -> Tuple[bool, Optional[str]]:
        if not os.path.exists(file_path):
            return False, 'File does not exist'
        size = os.path.getsize(file_path)
        if size > MAX_UPLOAD_SIZE_BYTES:
            return False, f'File too large (max {MAX_UPLOAD_SIZE_MB} MB)'
        if size == 0:
            return False, 'File is empty'
        ext = pathlib.Path(file_path).suffix.lstrip('.').lower()
        if ext not in SUPPORTED_UPLOAD_FORMATS:
            return False, f'Unsupported file extension: .{ext}' if ext else 'Missing file extension'
        return True, None

    def get_file_info(self, file_path: str):
        if not os.path.exists(file_path):
            raise FileNotFoundError(file_path)
        size = os.path.getsize(file_path)
        ext = pathlib.Path(file_path).suffix.lower()
        mime, _ = mimetypes.guess_type(file_path)
        return {
            'size_bytes': size,
            'size_mb': size / (1024 * 1024),
            'extension': ext,
            'mime_type': mime,
            'filename': pathlib.Path(file_path).name,
        }

    def cleanup_temp_file(self, file_path: str):
        try:
            if file_path and os.path.exists(file_path) and os.path.commonpath([os.path.abspath(file_path), os.path.abspath(self.temp_dir)]) == os.path.abspath(self.temp_dir):
                os.remove(file_path)
                LOG.info('Removed temp file', extra={'file': file_path})
        except OSError:
            LOG.exception('Failed to cleanup temp file')
