import io

from PIL import Image

from zenhanzi.annotate import annotate_strokes, render_annotated_png
from zenhanzi.models import Point, Stroke

GREEN = (22, 163, 74)
RED = (220, 38, 38)


def blank(size=120, color=(255, 255, 255)):
    return Image.new("RGB", (size, size), color)


def stroke(*points):
    return Stroke(tuple(Point(x, y) for x, y in points))


def test_start_and_end_markers():
    annotated = annotate_strokes(blank(), [stroke((30, 60), (90, 60))])
    # Left of the "1" label, inside the start disc
    assert annotated.getpixel((22, 60)) == GREEN
    assert annotated.getpixel((90, 60)) == RED



def test_later_start_marker_covers_earlier_end_dot():
    first = stroke((20, 60), (60, 60))
    second = stroke((54, 60), (54, 100))
    # Right of the "2" label, inside both the end dot of stroke 1 and the start disc of stroke 2
    assert annotate_strokes(blank(), [first]).getpixel((63, 60)) == RED
    assert annotate_strokes(blank(), [first, second]).getpixel((63, 60)) == GREEN

def test_tap_gets_no_end_marker():
    annotated = annotate_strokes(blank(), [stroke((60, 60))])
    assert annotated.getpixel((52, 60)) == GREEN
    assert annotated.getpixel((60, 80)) == (255, 255, 255)


def test_input_image_is_not_modified():
    image = blank()
    before = image.tobytes()
    annotate_strokes(image, [stroke((30, 30), (90, 90))])
    assert image.tobytes() == before


def test_no_strokes_gives_plain_copy():
    image = blank(color=(200, 200, 200))
    annotated = annotate_strokes(image, [])
    assert annotated is not image
    assert annotated.tobytes() == image.tobytes()


def test_transparency_is_flattened_onto_white():
    transparent = Image.new("RGBA", (50, 50), (0, 0, 0, 0))
    annotated = annotate_strokes(transparent, [])
    assert annotated.mode == "RGB"
    assert annotated.getpixel((25, 25)) == (255, 255, 255)


def test_png_bytes_are_accepted_and_deterministic():
    buffer = io.BytesIO()
    blank().save(buffer, format="PNG")
    strokes = [stroke((30, 30), (90, 90)), stroke((90, 30), (30, 90))]

    first = render_annotated_png(buffer.getvalue(), strokes)
    second = render_annotated_png(buffer.getvalue(), strokes)
    assert first == second
    assert first.startswith(b"\x89PNG")
