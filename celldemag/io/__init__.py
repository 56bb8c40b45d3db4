from .manifest import fields_manifest_payload, write_manifest
from .npz import (
    load_cells,
    load_fields,
    load_owner_rank,
    load_tensor,
    save_cells,
    save_fields,
    save_tensor,
)
