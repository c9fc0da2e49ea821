"""Generate one sample image per supported format for upload demos."""
import os

from PIL import Image, ImageDraw

OUT_DIR = "sample_data"

img = Image.new("RGB", (800, 600), color=(41, 128, 185))
draw = ImageDraw.Draw(img)

# Draw a simple grid pattern so nearest-neighbour downscaling is visible
for x in range(0, 800, 40):
    draw.line([(x, 0), (x, 600)], fill=(52, 152, 219), width=1)
for y in range(0, 600, 40):
    draw.line([(0, y), (800, y)], fill=(52, 152, 219), width=1)

# Draw a centered rectangle
draw.rectangle([200, 150, 600, 450], fill=(231, 76, 60), outline=(192, 57, 43), width=3)

os.makedirs(OUT_DIR, exist_ok=True)
for name, fmt in [("sample.jpg", "JPEG"), ("sample.png", "PNG"), ("sample.gif", "GIF"),
                  ("sample.bmp", "BMP"), ("sample.tiff", "TIFF")]:
    path = os.path.join(OUT_DIR, name)
    img.save(path, fmt)
    print(f"Created {path} (800x600)")
