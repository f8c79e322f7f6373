"""
Tests for field burning with PyMuPDF.
"""
import fitz
import pytest

from legalnexus.exceptions import FieldBurnError
from legalnexus.models import SigningField
from legalnexus.pdf.burn import (
    FieldBurner,
    FieldRect,
    ascii_fallback,
    compute_field_rect,
    decode_data_url,
    fit_image_rect,
    is_pdf,
    visual_order,
)


def make_field(field_id="f1", field_type="text", x=0.1, y=0.1, width=0.5, height=0.05, page=1):
    return SigningField(id=field_id, type=field_type, x=x, y=y, width=width, height=height, page=page)


@pytest.fixture
def burner():
    return FieldBurner()


def page_texts(pdf_data):
    with fitz.open(stream=pdf_data, filetype="pdf") as doc:
        return [page.get_text() for page in doc]


def text_span(pdf_data, needle, page_number=0):
    with fitz.open(stream=pdf_data, filetype="pdf") as doc:
        for block in doc[page_number].get_text("dict")["blocks"]:
            for line in block.get("lines", []):
                for span in line["spans"]:
                    if needle in span["text"]:
                        return span
    raise AssertionError(f"{needle!r} not drawn")


class TestGeometry:
    """Coordinate conversion between editor space and PDF space."""

    def test_compute_field_rect(self):
        rect = compute_field_rect(make_field(x=0.1, y=0.2, width=0.3, height=0.1), 1000, 500)
        assert rect == FieldRect(x=100, y=350, width=300, height=50)

    def test_full_width_band_at_top(self):
        """A band at the top of the page sits at the top of PDF space."""
        rect = compute_field_rect(make_field(x=0, y=0, width=1, height=0.1), 400, 200)
        assert rect.y == pytest.approx(180)
        assert rect.height == pytest.approx(20)

        fitz_rect = rect.to_fitz_rect(200)
        assert fitz_rect.y0 == pytest.approx(0)
        assert fitz_rect.y1 == pytest.approx(20)
        assert fitz_rect.x1 == pytest.approx(400)

    def test_to_fitz_rect(self):
        fitz_rect = FieldRect(x=100, y=350, width=300, height=50).to_fitz_rect(500)
        assert tuple(fitz_rect) == pytest.approx((100, 100, 400, 150))

    def test_fit_image_rect_keeps_aspect_ratio(self):
        fitted = fit_image_rect(FieldRect(x=0, y=0, width=100, height=50), 120, 40)

        assert fitted.width == pytest.approx(100)
        assert fitted.height == pytest.approx(100 / 3)
        assert fitted.x == 0
        assert fitted.y == pytest.approx((50 - 100 / 3) / 2)


class TestHelpers:

    @pytest.mark.parametrize("mime_type,path,expected", [
        ("application/pdf", None, True),
        ("Application/PDF; charset=binary", None, True),
        ("image/png", "a.png", False),
        (None, "c1/signing/contract.PDF", True),
        (None, None, False),
    ])
    def test_is_pdf(self, mime_type, path, expected):
        assert is_pdf(mime_type, path) is expected

    def test_visual_order_reverses_hebrew(self):
        assert visual_order("שלום") == "םולש"

    def test_visual_order_keeps_latin_runs(self):
        assert visual_order("שלום 123") == "123 םולש"

    def test_visual_order_leaves_ltr_text(self):
        assert visual_order("Israel Israeli") == "Israel Israeli"

    @pytest.mark.parametrize("value,expected", [
        ("abc", "abc"),
        ("שלום", "????"),
        ("", "X"),
        ("  ", "X"),
    ])
    def test_ascii_fallback(self, value, expected):
        assert ascii_fallback(value) == expected

    def test_decode_data_url(self, signature_data_url):
        media_type, data = decode_data_url(signature_data_url)
        assert media_type == "image/png"
        assert data.startswith(b"\x89PNG")

    @pytest.mark.parametrize("value", [
        "not a data url",
        "data:text/plain;base64,aGVsbG8=",
        "data:image/png;base64,",
        "https://example.com/sig.png",
    ])
    def test_decode_data_url_rejects(self, value):
        with pytest.raises(ValueError):
            decode_data_url(value)


class TestFieldBurner:
    """Test FieldBurner.burn()."""

    def test_text_is_drawn(self, burner, pdf_bytes):
        result = burner.burn(pdf_bytes, "application/pdf", [make_field()], {"f1": "Israel Israeli"})

        assert result.drawn == 1
        assert result.failed == []
        texts = page_texts(result.pdf_bytes)
        assert len(texts) == 2
        assert "Israel Israeli" in texts[0]
        assert "Israel Israeli" not in texts[1]

    def test_signature_only_leaves_text_blank(self, burner, pdf_bytes, signature_data_url):
        """A missing value is skipped, not an error; requiredness is checked elsewhere."""
        fields = [
            make_field("sig", "signature", y=0.8, height=0.08),
            make_field("name", "text", y=0.7),
        ]
        fields[0].required = True
        fields[1].required = True

        result = burner.burn(pdf_bytes, "application/pdf", fields, {"sig": signature_data_url})

        assert result.drawn == 1
        assert result.skipped == 1
        assert result.failed == []
        with fitz.open(stream=result.pdf_bytes, filetype="pdf") as doc:
            assert len(doc[0].get_images()) == 1
            assert doc[0].get_text().strip() == "Page 1"

    def test_image_original_becomes_one_page_pdf(self, burner, png_bytes):
        result = burner.burn(png_bytes, "image/png", [make_field()], {"f1": "Signed copy"})

        with fitz.open(stream=result.pdf_bytes, filetype="pdf") as doc:
            assert doc.page_count == 1
            assert doc[0].rect.width == pytest.approx(400)
            assert doc[0].rect.height == pytest.approx(200)
            assert "Signed copy" in doc[0].get_text()

    def test_jpeg_original(self, burner, jpeg_bytes):
        result = burner.burn(jpeg_bytes, "image/jpeg", [], {})

        with fitz.open(stream=result.pdf_bytes, filetype="pdf") as doc:
            assert doc.page_count == 1
            assert (doc[0].rect.width, doc[0].rect.height) == pytest.approx((300, 400))

    def test_page_number_clamped_to_last_page(self, burner, pdf_bytes):
        result = burner.burn(pdf_bytes, "application/pdf", [make_field(page=9)], {"f1": "Last page"})

        texts = page_texts(result.pdf_bytes)
        assert "Last page" not in texts[0]
        assert "Last page" in texts[1]

    def test_empty_values_skipped(self, burner, pdf_bytes):
        fields = [make_field("a"), make_field("b", y=0.3)]

        result = burner.burn(pdf_bytes, "application/pdf", fields, {"a": ""})

        assert (result.drawn, result.skipped) == (0, 2)

    def test_bad_signature_recorded_as_failed(self, burner, pdf_bytes):
        fields = [make_field("sig", "signature"), make_field("name", y=0.3)]
        values = {"sig": "data:image/png;base64,AAAAAAAA", "name": "Dana"}

        result = burner.burn(pdf_bytes, "application/pdf", fields, values)

        assert result.failed == ["sig"]
        assert result.drawn == 1
        assert "Dana" in page_texts(result.pdf_bytes)[0]

    def test_non_latin_text_still_drawn(self, burner, pdf_bytes):
        """With or without a Hebrew-capable font something lands in the field."""
        result = burner.burn(pdf_bytes, "application/pdf", [make_field()], {"f1": "ישראל ישראלי"})

        assert result.drawn == 1
        assert page_texts(result.pdf_bytes)[0].strip() != "Page 1"

    def test_latin_text_without_unicode_font(self, pdf_bytes, caplog):
        """Built-in Helvetica renders Latin text at full size and in black."""
        burner = FieldBurner(font_path="")

        with caplog.at_level("INFO", logger="legalnexus.pdf.burn"):
            result = burner.burn(pdf_bytes, "application/pdf", [make_field()], {"f1": "José Israeli"})

        assert result.drawn == 1
        assert "outside the font" not in caplog.text
        span = text_span(result.pdf_bytes, "José Israeli")
        assert span["size"] == pytest.approx(12)
        assert span["color"] == 0

    def test_unrenderable_text_without_unicode_font(self, pdf_bytes, caplog):
        burner = FieldBurner(font_path="")

        with caplog.at_level("INFO", logger="legalnexus.pdf.burn"):
            result = burner.burn(pdf_bytes, "application/pdf", [make_field()], {"f1": "דנה Cohen"})

        assert result.drawn == 1
        assert "outside the font" in caplog.text
        span = text_span(result.pdf_bytes, "Cohen")
        assert span["size"] == pytest.approx(10)
        assert span["color"] != 0

    def test_output_is_not_encrypted(self, burner, pdf_bytes):
        result = burner.burn(pdf_bytes, "application/pdf", [], {})
        with fitz.open(stream=result.pdf_bytes, filetype="pdf") as doc:
            assert not doc.needs_pass

    @pytest.mark.parametrize("original,mime_type", [
        (b"", "application/pdf"),
        (b"this is not a pdf", "application/pdf"),
        (b"this is not an image", "image/png"),
    ])
    def test_unloadable_original(self, burner, original, mime_type):
        with pytest.raises(FieldBurnError):
            burner.burn(original, mime_type, [make_field()], {"f1": "x"})
