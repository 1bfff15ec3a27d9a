"""Tests for classifier JSON persistence and tree staging."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError
from pytest_check import check

from polyforest.decision_tree.forest import RandomForest
from polyforest.decision_tree.models import DecisionTree
from polyforest.decision_tree.persistence import (
    load_classifier,
    load_decision_tree,
    load_random_forest,
    save_classifier,
    stage_decision_tree,
)
from polyforest.exceptions import InvalidConfigurationError, StructuralInvalidTreeError
from polyforest.features import SparseVector


def _make_tree() -> DecisionTree:
    return DecisionTree(
        outcomes=[0, 1, 2],
        child=[{0: 1, 3: 2}, {}, {}],
        splitting_feature=[4, None, None],
        outcome_histograms=[{0: 2, 2: 3}, {0: 2}, {2: 3}],
    )


class TestSaveAndLoad:
    """Tests for saving and loading trees and forests."""

    def test_decision_tree_file_uses_serialized_field_names(self, tmp_path: Path) -> None:
        """The JSON document uses the camel-case field names."""
        # Arrange
        path = tmp_path / "arclabel.dt.json"

        # Act
        save_classifier(_make_tree(), path)
        document = json.loads(path.read_text(encoding="utf-8"))

        # Assert
        with check:
            assert set(document) == {"outcomes", "child", "splittingFeature", "outcomeHistograms"}
        with check:
            assert document["child"][0] == {"0": 1, "3": 2}

    def test_decision_tree_reloads_equal(self, tmp_path: Path) -> None:
        """A reloaded tree equals the saved one and classifies the same way."""
        # Arrange
        tree = _make_tree()
        path = save_classifier(tree, tmp_path / "tree.json")
        vector = SparseVector(num_features=5, values={4: 3})

        # Act
        loaded = load_decision_tree(path)

        # Assert
        with check:
            assert loaded == tree
        with check:
            assert loaded.classify(vector) == tree.classify(vector)

    def test_random_forest_reloads_equal(self, tmp_path: Path) -> None:
        """A reloaded forest equals the saved one."""
        forest = RandomForest(all_outcomes=[0, 1, 2], decision_trees=[_make_tree(), _make_tree()])
        path = save_classifier(forest, tmp_path / "forest.json")

        loaded = load_random_forest(path)

        with check:
            assert loaded == forest
        with check:
            assert "allOutcomes" in json.loads(path.read_text(encoding="utf-8"))

    def test_load_classifier_detects_type(self, tmp_path: Path) -> None:
        """load_classifier returns whichever classifier the file holds."""
        tree_path = save_classifier(_make_tree(), tmp_path / "tree.json")
        forest_path = save_classifier(
            RandomForest(all_outcomes=[0, 1, 2], decision_trees=[_make_tree()]),
            tmp_path / "forest.json",
        )

        with check:
            assert isinstance(load_classifier(tree_path), DecisionTree)
        with check:
            assert isinstance(load_classifier(forest_path), RandomForest)

    def test_loading_validates_structure(self, tmp_path: Path) -> None:
        """A malformed tree on disk is rejected like a malformed tree in memory."""
        path = tmp_path / "broken.json"
        path.write_text(
            json.dumps({
                "outcomes": [0, 1],
                "child": [{}, {}],
                "splittingFeature": [None, None],
                "outcomeHistograms": [{}, {}],
            }),
            encoding="utf-8",
        )

        with pytest.raises(StructuralInvalidTreeError):
            load_decision_tree(path)

    def test_loading_empty_forest_raises(self, tmp_path: Path) -> None:
        """A forest without trees is rejected on load."""
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"allOutcomes": [0, 1], "decisionTrees": []}), encoding="utf-8")

        with pytest.raises(InvalidConfigurationError):
            load_random_forest(path)

    def test_loading_wrong_document_raises(self, tmp_path: Path) -> None:
        """A forest document is not a tree."""
        path = save_classifier(RandomForest(all_outcomes=[0, 1, 2], decision_trees=[_make_tree()]), tmp_path / "f.json")

        with pytest.raises(ValidationError):
            load_decision_tree(path)


class TestStageDecisionTree:
    """Tests for ensemble staging files."""

    def test_writes_one_file_per_index(self, tmp_path: Path) -> None:
        """Each index gets its own file that reloads to the staged tree."""
        # Arrange
        tree = _make_tree()

        # Act
        paths = [stage_decision_tree(tree, tmp_path, index) for index in range(3)]

        # Assert
        with check:
            assert len(set(paths)) == 3
        with check:
            assert all(path.parent == tmp_path for path in paths)
        with check:
            assert paths[1].name == "tree-00001.json"
        with check:
            assert load_decision_tree(paths[2]) == tree

    def test_refuses_to_overwrite(self, tmp_path: Path) -> None:
        """Staging the same index twice fails instead of overwriting."""
        stage_decision_tree(_make_tree(), tmp_path, 0)

        with pytest.raises(FileExistsError):
            stage_decision_tree(_make_tree(), tmp_path, 0)
