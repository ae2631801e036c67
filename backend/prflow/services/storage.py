"""Local filesystem document store.

Stored files are write-once: storing to a path that already exists fails instead of
replacing the bytes a filled slot points at.
"""
from __future__ import annotations
import logging
import os
from typing import Protocol

from prflow.errors import UpstreamError, NotFoundError

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def store(self, data: bytes, path_hint: str) -> str: ...

    def fetch(self, url: str) -> bytes: ...


class LocalDocumentStore:
    def __init__(self, root: str, base_url: str = '/files'):
        self.root = os.path.abspath(root)
        self.base_url = base_url.rstrip('/')

    def resolve(self, relative: str) -> str:
        """Absolute path for relative, refusing anything that escapes the root."""
        path = os.path.abspath(os.path.join(self.root, relative))
        if path != self.root and not path.startswith(self.root + os.sep):
            raise NotFoundError('Document not found')
        return path

    def url_for(self, relative: str) -> str:
        return f'{self.base_url}/{relative}'

    def relative_from_url(self, url: str) -> str:
        prefix = self.base_url + '/'
        if not url.startswith(prefix):
            raise NotFoundError('Document not found')
        return url[len(prefix):]

    def store(self, data: bytes, path_hint: str) -> str:
        path = self.resolve(path_hint)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'xb') as fh:
                fh.write(data)
        except FileExistsError:
            logger.error('Refusing to overwrite stored document %s', path_hint)
            raise UpstreamError('Document already stored at this path')
        except OSError as exc:
            logger.exception('Failed to store document %s', path_hint)
            raise UpstreamError(f'Document storage failed: {exc.strerror or exc}') from exc
        logger.info('Stored document %s (%d bytes)', path_hint, len(data))
        return self.url_for(path_hint)

    def fetch(self, url: str) -> bytes:
        path = self.resolve(self.relative_from_url(url))
        try:
            with open(path, 'rb') as fh:
                return fh.read()
        except FileNotFoundError:
            raise NotFoundError('Document not found')
        except OSError as exc:
            logger.exception('Failed to read document %s', url)
            raise UpstreamError(f'Document retrieval failed: {exc.strerror or exc}') from exc


__all__ = ['DocumentStore', 'LocalDocumentStore']
