"""Sales report import: decode, repair, map, analyze and persist seller exports."""
