from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes. The unique ones back the create-once / single-active rules."""
        try:
            await self.db.deals.create_index("deal_id", unique=True)
            await self.db.deals.create_index("creator_id")
            await self.db.deals.create_index("brand_email")

            # One signature per (deal, role); a racing second insert raises DuplicateKeyError
            await self.db.contract_signatures.create_index(
                [("deal_id", 1), ("signer_role", 1)],
                unique=True
            )
            await self.db.contract_signatures.create_index("signature_id", unique=True)
            # Superseded signatures (re-sign flow) - append-only history
            await self.db.contract_signature_history.create_index([("deal_id", 1), ("superseded_at", -1)])

            # Single active challenge per (deal, role); issuing replaces it atomically
            await self.db.otp_challenges.create_index(
                [("deal_id", 1), ("signer_role", 1)],
                unique=True
            )

            # Immutable contract versions
            await self.db.contract_versions.create_index(
                [("deal_id", 1), ("version", 1)],
                unique=True
            )

            # Audit log indexes - deal timeline
            await self.db.audit_logs.create_index([("deal_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

