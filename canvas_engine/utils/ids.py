"""Canvas id generation."""
import uuid


def generate_node_id(kind: str) -> str:
    """Generate unique canvas node ID, prefixed with the node kind."""
    return f"{kind}-{uuid.uuid4().hex[:12]}"


def generate_edge_id(source_id: str, target_id: str) -> str:
    """Generate unique edge ID between two nodes."""
    return f"{source_id}-{target_id}-{uuid.uuid4().hex[:6]}"


def generate_version_id() -> str:
    return f"v-{uuid.uuid4().hex[:12]}"


def generate_comment_id() -> str:
    return f"c-{uuid.uuid4().hex[:12]}"


def generate_upload_name(suffix: str = "") -> str:
    """Generate unique filename for an uploaded media file."""
    return f"{uuid.uuid4()}{suffix}"


def generate_asset_id(kind: str) -> str:
    """ID for an image or file held inside a node."""
    return f"{kind}-{uuid.uuid4().hex[:8]}"
