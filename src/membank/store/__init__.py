"""Document storage: repositories, indices and tag search.

Layout:
    <root>/
    ├── global/
    │   ├── _index.json                # Document index (id/path/tag/type maps)
    │   ├── _global_index.json         # Legacy tag -> paths export
    │   └── *.md, *.json               # Shared documents
    └── feature-login/                 # One directory per branch, "/" -> "-"
        ├── _index.json
        ├── branchContext.md
        ├── activeContext.md
        ├── progress.md
        └── systemPatterns.md

Markdown files are the source of truth; every index can be rebuilt from them.
"""
