"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for JSON snapshot files and SQLite-based model persistence.
"""

import json
import os
import sqlite3

import numpy as np
import pytest

from digitnet.config import TrainConfig
from digitnet.mnist_stream import MNISTStream
from digitnet.network import Network
from digitnet.model_persistence import (
    ModelDatabase,
    delete_network,
    get_network_metadata,
    list_saved_networks,
    load_model,
    load_network,
    load_or_create_network,
    model_file_path,
    network_from_dict,
    network_to_dict,
    save_model,
    save_network,
)
from digitnet.training import train


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a small 3-4-2 network for testing."""
    return Network.create([3, 4, 2], 'relu', np.random.default_rng(11))


def assert_same_parameters(a, b):
    assert a.sizes == b.sizes
    for la, lb in zip(a.layers, b.layers):
        assert np.array_equal(la.weights, lb.weights)
        assert np.array_equal(la.biases, lb.biases)


@pytest.mark.unit
class TestSnapshotFormat:
    """Test the layers/neurons/weights/bias structure."""

    def test_structure(self, fixed_network):
        data = network_to_dict(fixed_network)
        encoded = json.loads(json.dumps(data, default=lambda o: o.tolist()))

        assert len(encoded['layers']) == 2
        first = encoded['layers'][0]['neurons']
        assert first[0] == {'weights': [0.5, -1.0], 'bias': 0.0}
        assert first[1] == {'weights': [1.0, 1.0], 'bias': -1.0}

    def test_from_dict(self):
        net = network_from_dict({'layers': [
            {'neurons': [{'weights': [1.0, 2.0], 'bias': 0.5}]},
        ]})
        assert net.sizes == [2, 1]
        assert net.layers[0].biases[0] == 0.5

    @pytest.mark.parametrize('data', [
        {},
        {'layers': [{'neurons': []}]},
        {'layers': [{'neurons': [{'weights': [1.0]}]}]},
        {'layers': [
            {'neurons': [{'weights': [1.0, 2.0], 'bias': 0.0}]},
            {'neurons': [{'weights': [1.0, 2.0], 'bias': 0.0}]},
        ]},
    ])
    def test_malformed_snapshot(self, data):
        with pytest.raises(ValueError):
            network_from_dict(data)


@pytest.mark.unit
class TestModelFiles:
    """Test JSON snapshot files."""

    def test_file_name(self):
        path = model_file_path('models', 'default', 'sigmoid')
        assert path == os.path.join('models', 'default.sigmoid.model.json')

    def test_save_and_load_preserves_parameters(self, simple_network, tmp_path):
        path = str(tmp_path / "nested" / "net.relu.model.json")

        save_model(simple_network, path)
        loaded = load_model(path)

        assert os.path.exists(path)
        assert_same_parameters(simple_network, loaded)

    def test_load_missing_file(self, tmp_path):
        assert load_model(str(tmp_path / "missing.json")) is None

    def test_load_invalid_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text('{"layers": [{"neurons": []}]}')
        with pytest.raises(ValueError):
            load_model(str(path))

    def test_load_or_create_prefers_saved(self, simple_network, tmp_path):
        model_dir = str(tmp_path)
        save_model(simple_network, model_file_path(model_dir, 'mine', 'relu'))

        loaded = load_or_create_network([5, 5], 'relu', model_dir, 'mine')
        assert_same_parameters(simple_network, loaded)

    def test_load_or_create_initializes(self, tmp_path):
        net = load_or_create_network([6, 3, 2], 'sigmoid', str(tmp_path), 'new')
        assert net.sizes == [6, 3, 2]
        assert not os.listdir(str(tmp_path))


@pytest.mark.unit
class TestModelPersistence:
    """Test basic database persistence operations."""

    def test_save_network_creates_database(self, simple_network, temp_db_dir):
        """Test that saving a network creates the database file."""
        success = save_network(
            simple_network,
            "test_network_1",
            model_dir=temp_db_dir,
            trained=False
        )

        assert success is True
        assert os.path.exists(os.path.join(temp_db_dir, "networks.db"))

    def test_save_network_with_metadata(self, simple_network, temp_db_dir):
        """Test that network metadata is saved correctly."""
        network_id = "trained_network_1"

        success = save_network(
            simple_network,
            network_id,
            model_dir=temp_db_dir,
            activation_function='sigmoid',
            trained=True,
            accuracy=0.85
        )

        assert success is True

        metadata = get_network_metadata(network_id, temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == network_id
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85
        assert metadata['architecture'] == [3, 4, 2]
        assert metadata['activation_function'] == 'sigmoid'
        assert 'created_at' in metadata
        assert 'updated_at' in metadata

    def test_load_preserves_weights(self, simple_network, temp_db_dir):
        """Test that saved weights are preserved after loading."""
        save_network(simple_network, "test_network_3", model_dir=temp_db_dir)
        loaded = load_network("test_network_3", temp_db_dir)

        assert isinstance(loaded, Network)
        assert_same_parameters(simple_network, loaded)

    def test_load_nonexistent_network(self, temp_db_dir):
        assert load_network("nonexistent", temp_db_dir) is None

    def test_list_saved_networks_empty(self, temp_db_dir):
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        save_network(simple_network, "net1", model_dir=temp_db_dir, trained=True, accuracy=0.9)
        save_network(simple_network, "net2", model_dir=temp_db_dir, trained=False)

        networks = list_saved_networks(temp_db_dir)

        assert len(networks) == 2
        assert {net['network_id'] for net in networks} == {"net1", "net2"}

    def test_delete_network(self, simple_network, temp_db_dir):
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        ModelDatabase(db_path=os.path.join(temp_db_dir, 'networks.db'))
        assert delete_network("nonexistent", temp_db_dir) is False

    def test_update_keeps_single_row(self, simple_network, temp_db_dir):
        """Saving with the same ID replaces the stored network."""
        network_id = "update_test"
        save_network(simple_network, network_id, model_dir=temp_db_dir, trained=False)
        assert get_network_metadata(network_id, temp_db_dir)['trained'] is False

        save_network(simple_network, network_id, model_dir=temp_db_dir,
                     trained=True, accuracy=0.88)

        metadata = get_network_metadata(network_id, temp_db_dir)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.88
        assert len(list_saved_networks(temp_db_dir)) == 1

    @pytest.mark.parametrize('accuracy', [-0.1, 1.5])
    def test_invalid_accuracy_rejected(self, simple_network, temp_db_dir, accuracy):
        assert save_network(simple_network, "bad", model_dir=temp_db_dir,
                            accuracy=accuracy) is False
        assert get_network_metadata("bad", temp_db_dir) is None

    @pytest.mark.parametrize('network_id', ["", None, 42])
    def test_invalid_network_id(self, simple_network, temp_db_dir, network_id):
        assert save_network(simple_network, network_id, model_dir=temp_db_dir) is False
        assert load_network(network_id, temp_db_dir) is None
        assert delete_network(network_id, temp_db_dir) is False
        assert get_network_metadata(network_id, temp_db_dir) is None

    def test_corrupted_row_returns_none(self, simple_network, temp_db_dir):
        save_network(simple_network, "corrupt", model_dir=temp_db_dir)

        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        conn.execute(
            "UPDATE networks SET network_data = ? WHERE network_id = ?",
            ('{"layers": "oops"}', "corrupt")
        )
        conn.commit()
        conn.close()

        assert load_network("corrupt", temp_db_dir) is None


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_train_cycle(self, temp_db_dir, data_dir):
        """Save, load, train and save again."""
        network_id = "cycle_test"
        save_network(Network.create([4, 3, 10], 'relu'), network_id,
                     model_dir=temp_db_dir, trained=False)

        loaded = load_network(network_id, temp_db_dir)
        with MNISTStream.for_split('train', data_dir) as mnist:
            train(loaded, mnist, TrainConfig(epochs=1, batch_size=2))

        save_network(loaded, network_id, model_dir=temp_db_dir,
                     trained=True, accuracy=0.85)

        final = load_network(network_id, temp_db_dir)
        metadata = get_network_metadata(network_id, temp_db_dir)
        assert_same_parameters(loaded, final)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85

    def test_multiple_networks_coexist(self, temp_db_dir):
        networks_to_create = [
            ([784, 64, 32, 10], "mnist_relu"),
            ([784, 16, 16, 10], "mnist_sigmoid"),
            ([3, 4, 2], "simple_network"),
        ]

        for architecture, network_id in networks_to_create:
            save_network(Network.create(architecture), network_id, model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(networks_to_create)
        for architecture, network_id in networks_to_create:
            assert load_network(network_id, temp_db_dir).sizes == architecture
