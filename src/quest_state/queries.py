"""SQL query builders for Quest State."""

REQUIRED_TABLES = ("entities", "entity_fields", "markers", "field_changes", "project_meta")


def build_markers_query(
    by_entity: bool = False,
    up_to_position: bool = False,
    by_id: bool = False,
) -> str:
    """Build query for markers joined with their field changes.

    One row per change (markers without changes yield a single row with NULL
    change columns). Rows come back in fold order: position, then creation
    time, then insertion sequence, then change order within the marker.
    """
    conditions = []
    if by_entity:
        conditions.append("m.entity_id = :entity_id")
    if up_to_position:
        conditions.append("m.position <= :position")
    if by_id:
        conditions.append("m.id = :marker_id")
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    return f"""
    SELECT m.id, m.entity_id, m.position, m.icon, m.color, m.description,
           m.created_at, m.modified_at,
           fc.ordinal, fc.path, fc.change_type, fc.value
    FROM markers m
    LEFT JOIN field_changes fc ON fc.marker_id = m.id
    {where}
    ORDER BY m.position, m.created_at, m.seq, fc.ordinal
    """


def build_known_fields_query() -> str:
    """Build query for an entity's known fields in insertion order."""
    return """
    SELECT path, created_at, last_modified
    FROM entity_fields
    WHERE entity_id = :entity_id
    ORDER BY ordinal
    """


def build_register_field_query() -> str:
    """Build upsert that appends a new known field or touches an existing one."""
    return """
    INSERT INTO entity_fields (entity_id, path, ordinal, created_at, last_modified)
    VALUES (
        :entity_id,
        :path,
        (SELECT COALESCE(MAX(ordinal), 0) + 1 FROM entity_fields WHERE entity_id = :entity_id),
        :now,
        :now
    )
    ON CONFLICT (entity_id, path) DO UPDATE SET last_modified = excluded.last_modified
    """


def build_copy_fields_query() -> str:
    """Build query copying one entity's field schema onto another."""
    return """
    INSERT INTO entity_fields (entity_id, path, ordinal, created_at, last_modified)
    SELECT :target_id, path, ordinal, created_at, last_modified
    FROM entity_fields
    WHERE entity_id = :source_id
    """


def build_strip_field_query() -> str:
    """Build query removing a path from every change of an entity's markers."""
    return """
    DELETE FROM field_changes
    WHERE path = :path
      AND marker_id IN (SELECT id FROM markers WHERE entity_id = :entity_id)
    """


def build_next_seq_query() -> str:
    """Build query for the next marker insertion sequence number."""
    return "SELECT COALESCE(MAX(seq), 0) + 1 AS next_seq FROM markers"
