from __future__ import annotations
import os
from flask import Blueprint, current_app, send_file

from prflow import get_db
from prflow.decorators.auth import require_permissions
from prflow.errors import NotFoundError
from prflow.repositories.purchase_requests import SqlRequestRepository
from prflow.services.policy import assert_visible, current_actor

files_bp = Blueprint('files', __name__)


@files_bp.get('/<path:subpath>')
@require_permissions('PR.READ')
def get_file(subpath: str):
    store = current_app.extensions['prflow.document_store']
    parts = subpath.split('/')
    # documents live under requests/<id>/<slot>/<token>/<file>; the request must be visible
    if len(parts) != 5 or parts[0] != 'requests':
        raise NotFoundError('Document not found')
    assert_visible(current_actor(), SqlRequestRepository(get_db()).find(parts[1]))
    path = store.resolve(subpath)
    if not os.path.isfile(path):
        raise NotFoundError('Document not found')
    return send_file(path, mimetype='application/pdf', download_name=parts[-1])
