"""Quick script to summarize the call-graph index of a project."""
import asyncio
import sys

from dotenv import load_dotenv
load_dotenv()

from callsite.config import settings
from callsite.core.display import format_timestamp
from callsite.core.errors import CallsiteError
from callsite.core.index_manager import IndexManager

root = sys.argv[1] if len(sys.argv) > 1 else settings.project_root
manager = IndexManager()

try:
    index = asyncio.run(manager.get_or_load(root))
except CallsiteError as exc:
    print(exc)
    raise SystemExit(1)
finally:
    manager.clear()

meta = index.metadata
print(f"Index     : {meta.index_path}")
print(f"Generated : {format_timestamp(meta.generated_at)}")
print(f"Nodes     : {meta.total_nodes}")
print(f"Links     : {meta.total_edges}")
print(f"Files     : {len(index.nodes_by_file)}")
print()

verified = [n for n in index.nodes_by_id.values() if n.verification_status is not None]
print(f"Functions with verification status: {len(verified)}")
for n in list(index.nodes_by_id.values())[:25]:
    status = n.verification_status.value if n.verification_status else "-"
    print(f"  [{status:10s}] {n.display_name} @ {n.relative_path}:{n.start_line}")
