"""Structure-preserving edits of string fields in JSON documents."""
