"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Persistence for trained networks.

Networks are serialized as a human-readable snapshot::

    {"layers": [{"neurons": [{"weights": [...], "bias": 0.1}, ...]}, ...]}

Snapshots are written either as JSON files (used by the command line
tools) or into an SQLite database together with metadata (used by the
API server).
"""

import os
import json
import sqlite3
import logging
from typing import Optional, List, Dict, Any, Generator, Sequence
from contextlib import contextmanager

import numpy as np

from digitnet.config import DEFAULT_ACTIVATION, DEFAULT_MODEL_NAME
from digitnet.network import Layer, Network

# Configure module logger
logger = logging.getLogger(__name__)


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


def network_to_dict(network: Network) -> Dict[str, Any]:
    """Convert a network to its layers/neurons/weights/bias structure."""
    return {
        'layers': [
            {
                'neurons': [
                    {'weights': weights, 'bias': bias}
                    for weights, bias in zip(layer.weights, layer.biases)
                ]
            }
            for layer in network.layers
        ]
    }


def network_from_dict(data: Dict[str, Any]) -> Network:
    """
    Rebuild a network from its snapshot structure.

    Raises:
        ValueError: If the structure is malformed or the layer shapes
            are inconsistent
    """
    try:
        layers = []
        for layer in data['layers']:
            neurons = layer['neurons']
            if not neurons:
                raise ValueError("A layer needs at least one neuron")
            weights = [neuron['weights'] for neuron in neurons]
            biases = [neuron['bias'] for neuron in neurons]
            layers.append(Layer(weights, biases))
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed network snapshot: {e!r}") from e

    return Network(layers)


# ============================================================================
# JSON FILES
# ============================================================================

def model_file_path(
    model_dir: str,
    model_name: str = DEFAULT_MODEL_NAME,
    activation_function: str = DEFAULT_ACTIVATION
) -> str:
    """Path of the JSON snapshot for a model name and activation."""
    return os.path.join(
        model_dir, f'{model_name}.{activation_function}.model.json'
    )


def save_model(network: Network, path: str) -> None:
    """Write a complete JSON snapshot of the network to path."""
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

    with open(path, 'w', encoding='utf-8') as f:
        json.dump(network_to_dict(network), f, cls=NetworkEncoder, indent=2)

    logger.info(f"Saved network {network.sizes} to {path}")


def load_model(path: str) -> Optional[Network]:
    """
    Load a JSON snapshot.

    Returns:
        The network, or None if the file does not exist

    Raises:
        ValueError: If the file is not a valid snapshot
    """
    if not os.path.exists(path):
        logger.warning(f"Model not found at {path}")
        return None

    with open(path, 'r', encoding='utf-8') as f:
        network = network_from_dict(json.load(f))

    logger.info(f"Loaded network {network.sizes} from {path}")
    return network


def load_or_create_network(
    sizes: Sequence[int],
    activation_function: str = DEFAULT_ACTIVATION,
    model_dir: str = 'models',
    model_name: str = DEFAULT_MODEL_NAME,
    rng: Optional[np.random.Generator] = None
) -> Network:
    """Load the named snapshot, or initialize a fresh network if it is absent."""
    path = model_file_path(model_dir, model_name, activation_function)
    network = load_model(path)
    if network is None:
        network = Network.create(sizes, activation_function, rng)
    return network


# ============================================================================
# SQLITE DATABASE
# ============================================================================

class ModelDatabase:
    """
    Manages SQLite database for neural network model persistence.

    The database stores:
    - Network metadata (architecture, activation, training status, accuracy)
    - The JSON snapshot of the network parameters
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    activation_function TEXT NOT NULL,
                    network_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        activation_function: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database, replacing any previous version.

        Raises:
            ValueError: If accuracy is out of valid range
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        network_data = json.dumps(network_to_dict(network), cls=NetworkEncoder)
        architecture_json = json.dumps(network.sizes)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            # Keep the original created_at when updating an existing row
            cursor.execute('''
                INSERT INTO networks
                (network_id, architecture, activation_function, network_data,
                 trained, accuracy, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    activation_function = excluded.activation_function,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                architecture_json,
                activation_function,
                network_data,
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.sizes}, trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Load a network from the database.

        Returns:
            Network object or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Network '{network_id}' not found")
                return None

            network = network_from_dict(json.loads(row['network_data']))
            logger.info(f"Loaded network '{network_id}'")
            return network

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'network_id': row['network_id'],
            'architecture': json.loads(row['architecture']),
            'activation_function': row['activation_function'],
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """List all networks with metadata, newest first."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT network_id, architecture, activation_function,
                       trained, accuracy, created_at, updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')

            networks = [self._row_to_metadata(row) for row in cursor.fetchall()]
            logger.debug(f"Listed {len(networks)} networks")
            return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network from the database.

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted network '{network_id}'")
            else:
                logger.warning(
                    f"Could not delete network '{network_id}': not found"
                )
            return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """Get network metadata without loading the parameters."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT network_id, architecture, activation_function,
                       trained, accuracy, created_at, updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Metadata for network '{network_id}' not found"
                )
                return None

            return self._row_to_metadata(row)


def _get_db(model_dir: str) -> ModelDatabase:
    return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = 'models',
    activation_function: str = DEFAULT_ACTIVATION,
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a neural network to the SQLite database.

    Args:
        network: The network to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        activation_function: Activation the network is used with
        trained: Boolean indicating if the network has been trained
        accuracy: The accuracy of the trained network (0.0 to 1.0)

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network.create([784, 64, 32, 10], 'relu')
        >>> save_network(net, "my_network", trained=False)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).save_network_to_db(
            network, network_id, activation_function, trained, accuracy
        )

    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except (AttributeError, TypeError) as e:
        logger.error(
            f"Serialization error saving network '{network_id}': {e}"
        )
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(network_id: str, model_dir: str = 'models') -> Optional[Network]:
    """
    Load a neural network from the SQLite database.

    Returns:
        The loaded network or None if not found or unreadable
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).load_network_from_db(network_id)

    except (ValueError, json.JSONDecodeError) as e:
        logger.error(
            f"Deserialization error loading network '{network_id}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading network '{network_id}': {e}"
        )
        return None


def list_saved_networks(model_dir: str = 'models') -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Example:
        >>> for net in list_saved_networks():
        ...     print(f"{net['network_id']}: {net['architecture']}")
    """
    try:
        return _get_db(model_dir).list_networks_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = 'models') -> bool:
    """
    Delete a saved network from the database.

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def get_network_metadata(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without loading its parameters.

    Example:
        >>> metadata = get_network_metadata("my_network")
        >>> if metadata:
        ...     print(f"Accuracy: {metadata['accuracy']}")
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None
