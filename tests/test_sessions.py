import unittest

from api.sessions import SessionManager
from orchestrator import RevealMode


class TestSessionManager(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.manager = SessionManager()

    async def test_create_snapshot_restore_delete(self):
        session_id = self.manager.create_session(mode=RevealMode.VOICE)
        orchestrator = self.manager.get_session(session_id)
        self.assertEqual(orchestrator.session.mode, RevealMode.VOICE)
        self.assertIsNotNone(orchestrator.extractor)
        self.assertIsNotNone(orchestrator.generator)

        await orchestrator.start()
        data = self.manager.snapshot(session_id)
        self.manager.delete_session(session_id)
        self.assertIsNone(self.manager.get_session(session_id))

        restored_id = self.manager.restore(data)
        self.assertEqual(restored_id, session_id)
        self.assertEqual(self.manager.get_session(restored_id).session.mode, RevealMode.VOICE)

    def test_unknown_session(self):
        self.assertIsNone(self.manager.get_session("missing"))
        self.assertIsNone(self.manager.snapshot("missing"))
        self.manager.delete_session("missing")

    def test_close_all(self):
        self.manager.create_session()
        self.manager.create_session()
        self.manager.close_all()
        self.assertEqual(self.manager.sessions, {})


if __name__ == "__main__":
    unittest.main()
