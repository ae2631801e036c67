from io import BytesIO
import pytest
from pypdf import PdfReader

from prflow.errors import UpstreamError, ValidationError
from prflow.services import signature
from tests.test_lifecycle_helpers import make_pdf, make_png


def test_standalone_signature_page():
    out = signature.render_signed_document(make_png())
    reader = PdfReader(BytesIO(out))
    assert len(reader.pages) == 1
    # A4 portrait
    assert round(float(reader.pages[0].mediabox.width)) == 595
    assert round(float(reader.pages[0].mediabox.height)) == 842


def test_stamp_keeps_quotation_pages():
    out = signature.render_signed_document(make_png(), make_pdf(pages=3))
    reader = PdfReader(BytesIO(out))
    assert len(reader.pages) == 3
    assert 'Quotation page 3' in reader.pages[-1].extract_text()
    # only the last page carries the image
    assert not reader.pages[0].images
    assert len(reader.pages[-1].images) >= 1


def test_grayscale_signature_is_accepted():
    buf = BytesIO()
    from PIL import Image
    Image.new('L', (50, 20), 0).save(buf, format='PNG')
    out = signature.render_signed_document(buf.getvalue())
    assert out.startswith(b'%PDF')


@pytest.mark.parametrize('data', [b'', b'not an image'])
def test_unreadable_signature(data):
    with pytest.raises(ValidationError):
        signature.render_signed_document(data)


def test_unreadable_quotation():
    with pytest.raises(UpstreamError):
        signature.render_signed_document(make_png(), b'%PDF-1.4 garbage')
