"""Shared fixtures: a small definition tree written into tmp_path."""

import textwrap
from pathlib import Path

import pytest

CAR_YAML = """\
collection: car
title: Cars
roles: [viewer, editor, admin]
access:
  delete: [admin]
labelField: model
fields:
  - name: model
    type: string
    searchable: true
    validation:
      required: true
    permissions:
      write: [editor]
  - name: year
    type: integer
    validation:
      min: 1886
  - name: vin
    type: string
    validation:
      unique: true
    permissions:
      read: [editor, admin]
      write: [editor]
  - name: color
    type: enum
    values: [red, blue, black]
    permissions:
      write: [editor]
  - name: extras
    type: multi_enum
    values: [abs, sunroof, towbar]
    permissions:
      write: [editor]
  - name: owner
    type: relation
    relation:
      collection: person
    permissions:
      write: [editor]
"""

PERSON_YAML = """\
collection: person
roles: [viewer, editor, admin]
fields:
  - name: name
    type: string
    searchable: true
    validation:
      required: true
    permissions:
      write: [editor]
  - name: email
    type: string
    validation:
      unique: true
    permissions:
      read: [editor]
      write: [editor]
"""

SETTINGS_YAML = """\
collection: settings
singleton: true
roles: [viewer, editor]
fields:
  - name: shop_name
    type: string
    validation:
      required: true
    permissions:
      write: [editor]
  - name: currency
    type: enum
    values: [EUR, USD]
    permissions:
      write: [editor]
"""

PAINT_YAML = """\
action: paint_car
title: Paint Car
handler: paint_car
roles: [editor]
fields:
  - name: car
    type: integer
    validation:
      required: true
  - name: color
    type: enum
    values: [red, blue, black]
    validation:
      required: true
  - name: secret_note
    type: string
    permissions:
      read: [nobody]
"""

SHOP_UNITS = {
    "collections/car.yaml": CAR_YAML,
    "collections/person.yaml": PERSON_YAML,
    "collections/settings.yaml": SETTINGS_YAML,
    "actions/paint_car.yaml": PAINT_YAML,
}


def write_project(root: Path, name: str, units: dict[str, str]) -> Path:
    """Write definition units under root/name and return the project dir."""
    project_dir = root / name
    for rel_path, content in units.items():
        path = project_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content))
    return project_dir


@pytest.fixture
def projects_path(tmp_path) -> Path:
    """A projects directory holding the "shop" project."""
    root = tmp_path / "projects"
    write_project(root, "shop", SHOP_UNITS)
    return root
