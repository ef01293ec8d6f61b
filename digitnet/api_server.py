"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for network training.

This module provides endpoints for:
- Creating and managing networks
- Training networks with real-time progress updates via WebSockets
- Benchmarking networks on the MNIST test split
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for network persistence
- IDX dataset files read on demand through MNISTStream

Run with ``python -m digitnet.api_server`` or point a gevent worker at
``digitnet.api_server:create_app()``.
"""

import os
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from digitnet.benchmark import evaluate, find_example
from digitnet.config import (
    DEFAULT_ACTIVATION,
    INPUT_SIZE,
    MODEL_CONFIGS,
    OUTPUT_SIZE,
    TrainConfig,
    configure_logging,
    get_data_dir,
    get_model_dir,
)
from digitnet.errors import ActivationFunctionError, MissingSampleError
from digitnet.functions import get_activation
from digitnet.mnist_stream import MNISTStream
from digitnet.network import Network
from digitnet.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
)
from digitnet.training import train

configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
app.config.update(
    MODEL_DIR=get_model_dir(),
    DATA_DIR=get_data_dir(),
)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}


def open_dataset(mode: str) -> MNISTStream:
    """Create a reader for a dataset split. Every job gets its own reader."""
    return MNISTStream.for_split(mode, app.config['DATA_DIR'])


def find_active_job(network_id: str) -> Optional[str]:
    """Return the id of a pending or running training job for the network."""
    for job_id, job in training_jobs.items():
        if job.get('network_id') == network_id and \
                job.get('status') in ('pending', 'training'):
            return job_id
    return None


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup to restore networks that were saved before the
    application was restarted.
    """
    saved_networks = list_saved_networks(app.config['MODEL_DIR'])

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, app.config['MODEL_DIR'])
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue

        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'activation_function': net_info['activation_function'],
            'trained': net_info['trained'],
            'accuracy': net_info['accuracy']
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


def create_app() -> Flask:
    """Restore saved networks and return the configured app."""
    reload_saved_networks()
    # Training jobs can't continue after a restart, so start fresh
    training_jobs.clear()
    return app


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status with counts of networks and active training jobs."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body (optional):
        {'activation_function': 'relu', 'layer_sizes': [784, 64, 32, 10]}

    The layer sizes default to the preset for the activation function.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    activation_function = data.get('activation_function', DEFAULT_ACTIVATION)

    try:
        get_activation(activation_function)
    except ActivationFunctionError as e:
        return jsonify({'error': str(e)}), 400

    layer_sizes = data.get('layer_sizes', MODEL_CONFIGS[activation_function])

    if not isinstance(layer_sizes, list) or len(layer_sizes) < 2 or \
            not all(isinstance(size, int) and not isinstance(size, bool) and size > 0
                    for size in layer_sizes):
        logger.warning(f"Invalid architecture requested: {layer_sizes}")
        return jsonify({
            'error': 'Invalid architecture. Must have at least 2 positive layer sizes.'
        }), 400

    if layer_sizes[0] != INPUT_SIZE or layer_sizes[-1] != OUTPUT_SIZE:
        logger.warning(f"Architecture does not fit the dataset: {layer_sizes}")
        return jsonify({
            'error': f'Invalid architecture. The first layer must have {INPUT_SIZE} '
                     f'inputs and the last layer {OUTPUT_SIZE} outputs.'
        }), 400

    network_id = str(uuid.uuid4())
    net = Network.create(layer_sizes, activation_function)

    active_networks[network_id] = {
        'network': net,
        'architecture': layer_sizes,
        'activation_function': activation_function,
        'trained': False,
        'accuracy': None
    }

    logger.info(
        f"Created network {network_id} with architecture {layer_sizes} "
        f"({activation_function})"
    )

    return jsonify({
        'network_id': network_id,
        'architecture': layer_sizes,
        'activation_function': activation_function,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {'epochs': 10, 'batch_size': 10, 'learning_rate': 0.01}

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    running_job = find_active_job(network_id)
    if running_job is not None:
        logger.warning(
            f"Training requested for network {network_id} while job "
            f"{running_job} is still running"
        )
        return jsonify({
            'error': 'Network is already being trained',
            'job_id': running_job
        }), 409

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400
    data['activation_function'] = active_networks[network_id]['activation_function']

    try:
        config = TrainConfig.from_dict(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': config.epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={config.epochs}, batch_size={config.batch_size}, "
        f"lr={config.learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(train_network_task, network_id, job_id, config)

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(network_id: str, job_id: str, config: TrainConfig) -> None:
    """
    Background task that trains a network.

    Sends progress updates via WebSocket as training progresses.
    """
    net = active_networks[network_id]['network']

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress
        training_jobs[job_id]['loss'] = data['loss']

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'loss': data['loss'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })

        # Let gevent send the message immediately
        gevent.sleep(0)

    def yield_to_other_tasks() -> None:
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")

        with open_dataset('train') as mnist:
            result = train(
                net,
                mnist,
                config,
                callback=on_epoch_complete,
                yield_func=yield_to_other_tasks
            )

        with open_dataset('test') as mnist:
            accuracy = evaluate(net, mnist, config.activation_function).accuracy

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['accuracy'] = accuracy

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100
        training_jobs[job_id]['epochs_loss'] = result.epochs_loss

        save_network(
            net,
            network_id,
            model_dir=app.config['MODEL_DIR'],
            activation_function=config.activation_function,
            trained=True,
            accuracy=accuracy
        )

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': float(accuracy),
            'epochs_loss': result.epochs_loss,
            'execution_time': result.execution_time,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'activation_function': info['activation_function'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    # Get saved networks, excluding duplicates already in memory
    saved_only = []
    for net in list_saved_networks(app.config['MODEL_DIR']):
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id, app.config['MODEL_DIR'])

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks/<network_id>/benchmark', methods=['POST'])
def benchmark_network(network_id: str):
    """Evaluate a network on the whole test split."""
    if network_id not in active_networks:
        logger.warning(f"Benchmark requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    info = active_networks[network_id]
    try:
        with open_dataset('test') as mnist:
            result = evaluate(info['network'], mnist, info['activation_function'])
    except FileNotFoundError as e:
        logger.error(f"Test data not available: {e}")
        return jsonify({'error': 'Test data not available'}), 500
    except (ValueError, MissingSampleError) as e:
        # Corrupt dataset files or a network that does not fit them
        logger.exception(f"Evaluation failed for network {network_id}: {e}")
        return jsonify({'error': f'Evaluation failed: {e}'}), 500

    response = result.to_dict()
    response['network_id'] = network_id
    return jsonify(response), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


def create_digit_image(pixels: np.ndarray, shape, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        pixels: Normalized pixel values of the image
        shape: (rows, cols) of the image
        predicted: The digit the network predicted (0-9)
        actual: The correct digit (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(pixels.reshape(shape), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def _example_response(network_id: str, successful: bool, max_attempts: int):
    if network_id not in active_networks:
        logger.warning(f"Example requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    info = active_networks[network_id]
    net = info['network']

    try:
        with open_dataset('test') as mnist:
            example = find_example(
                net, mnist, info['activation_function'],
                successful=successful, max_attempts=max_attempts
            )
            shape = (mnist.rows, mnist.cols)
    except FileNotFoundError as e:
        logger.error(f"Test data not available: {e}")
        return jsonify({'error': 'Test data not available'}), 500
    except (ValueError, MissingSampleError) as e:
        # Corrupt dataset files or a network that does not fit them
        logger.exception(f"Evaluation failed for network {network_id}: {e}")
        return jsonify({'error': f'Evaluation failed: {e}'}), 500

    if example is None:
        kind = 'successful' if successful else 'unsuccessful'
        return jsonify({
            'error': f'No {kind} example found after {max_attempts} attempts'
        }), 404

    index, row, predicted, classification = example
    return jsonify({
        'network_id': network_id,
        'example_index': index,
        'predicted_digit': predicted,
        'actual_digit': row.label,
        'image_data': create_digit_image(row.pixels, shape, predicted, row.label),
        'output_weights': net.layers[-1].weights.tolist(),
        'network_output': array_to_float_list(classification)
    }), 200


# ============================================================================
# EXAMPLE ENDPOINTS
# ============================================================================

@app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
def get_successful_example(network_id: str):
    """Return a random test image the network classifies correctly."""
    return _example_response(network_id, successful=True, max_attempts=100)


@app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(network_id: str):
    """Return a random test image the network gets wrong."""
    return _example_response(network_id, successful=False, max_attempts=200)


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))
    logger.info(f"Starting server at http://localhost:{port}/")

    create_app()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
