from pathlib import Path
import sys

# Ensure backend sources are importable when tests run without installation
sys.path.append(str(Path(__file__).resolve().parents[1] / "backend" / "src"))
