import os
import shelve
from typing import Optional

from ..logger import logger


class BlockchainStateStore:
    """
    Blockchain state persistent storage

    Uses Python's shelve module to remember the last fully processed block
    for each watcher, so a restart resumes where the previous run stopped.
    """

    def __init__(self, db_path: str):
        """
        Initialize state storage

        Args:
            db_path: Database path
        """
        try:
            # Ensure directory exists
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            self.db_path = db_path
            self.db = None

            self._open_db()
            logger.info(f"Initialized blockchain state store at {db_path}")
        except Exception as e:
            logger.error(f"Failed to initialize storage at {db_path}: {e}")
            raise

    def _open_db(self):
        """Open the database connection"""
        if self.db is None:
            try:
                self.db = shelve.open(self.db_path)
            except Exception as e:
                logger.error(f"Error opening database: {e}")
                raise

    def get_last_processed_block(self, network: str) -> Optional[int]:
        """
        Get the last processed block for a network

        Args:
            network: Network name

        Returns:
            Optional[int]: Last processed block number, or None if not found
        """
        key = f"last_block:{network}"
        try:
            self._open_db()
            return int(self.db[key]) if key in self.db else None
        except Exception as e:
            logger.error(f"Error retrieving last processed block for {network}: {e}")
            return None

    def set_last_processed_block(self, network: str, block_number: int):
        """
        Set the last processed block for a network

        Args:
            network: Network name
            block_number: Block number
        """
        key = f"last_block:{network}"
        try:
            self._open_db()
            self.db[key] = str(block_number)
            self.db.sync()
        except Exception as e:
            logger.error(f"Error setting last processed block for {network}: {e}")

    def close(self):
        """Close the database connection"""
        if self.db is not None:
            try:
                self.db.close()
                self.db = None
                logger.info("Blockchain state store closed")
            except Exception as e:
                logger.error(f"Error closing blockchain state store: {e}")
