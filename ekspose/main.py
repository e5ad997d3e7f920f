"""Process entry points.

``run`` starts the reconciliation controller on a background thread and
serves the admission webhook in the foreground. ``run_webhook`` and
``run_controller`` start one half only.
"""

import sys
import threading

from loguru import logger

from ekspose.admission.admission_controller import AdmissionServer
from ekspose.cluster import ClusterClient
from ekspose.config import AdmissionConfig, ControllerConfig
from ekspose.controller.events import EventDispatcher
from ekspose.controller.informer import DeploymentInformer
from ekspose.controller.reconciler import ReconciliationController


def configure_logging(debug: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else "INFO")


def build_controller(cluster: ClusterClient, config: ControllerConfig) -> tuple:
    """Wire the watch source, dispatcher and controller around one client."""
    informer = DeploymentInformer(
        cluster,
        namespace=config.watch_namespace,
        resync_period=config.resync_period,
    )
    controller = ReconciliationController(cluster, informer, config)
    informer.add_event_handler(EventDispatcher(controller.queue))
    return informer, controller


def start_controller(config: ControllerConfig) -> tuple:
    cluster = ClusterClient.from_environment(config.context)
    informer, controller = build_controller(cluster, config)

    stop_event = threading.Event()
    threading.Thread(target=informer.run, args=(stop_event,), name="deployment-informer", daemon=True).start()
    controller_thread = threading.Thread(
        target=controller.run, args=(stop_event,), name="ekspose-controller", daemon=True
    )
    controller_thread.start()
    return cluster, stop_event, informer, controller_thread


def stop_controller(cluster, stop_event, informer, controller_thread) -> None:
    """Signal the controller, wait briefly for it, then release the API connection pool."""
    stop_event.set()
    informer.stop()
    controller_thread.join(timeout=5)
    cluster.close()


def run():
    """Main entry point: controller and admission webhook in one process."""
    try:
        controller_config = ControllerConfig()
        admission_config = AdmissionConfig()
        configure_logging(controller_config.debug or admission_config.debug)
        logger.debug(f"Controller configuration: {controller_config.export_json()}")
        logger.debug(f"Admission configuration: {admission_config.export_json()}")

        handles = start_controller(controller_config)
        try:
            AdmissionServer(admission_config).run()
        finally:
            stop_controller(*handles)
    except Exception as e:
        logger.exception(f"Failed to start ekspose: {e}")
        raise


def run_webhook():
    """Admission webhook only."""
    try:
        config = AdmissionConfig()
        configure_logging(config.debug)
        logger.debug(f"Configuration: {config.export_json()}")
        AdmissionServer(config).run()
    except Exception as e:
        logger.exception(f"Failed to start admission webhook: {e}")
        raise


def run_controller():
    """Reconciliation controller only; runs until interrupted."""
    try:
        config = ControllerConfig()
        configure_logging(config.debug)
        logger.debug(f"Configuration: {config.export_json()}")

        handles = start_controller(config)
        controller_thread = handles[-1]
        try:
            while controller_thread.is_alive():
                controller_thread.join(timeout=1)
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping controller")
        finally:
            stop_controller(*handles)
    except Exception as e:
        logger.exception(f"Failed to start controller: {e}")
        raise


if __name__ == "__main__":
    run()
