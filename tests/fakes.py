from boxoffice.errors import DeliveryFailed
from boxoffice.model.orders import MessageRef


class RecordingTransport:
    """Stands in for the Telegram client; `fail` names methods that raise."""

    def __init__(self):
        self.sent = []
        self.photos = []
        self.edits = []
        self.acks = []
        self.fail = set()
        self._next_id = 100

    def _ref(self, chat_id, has_media=False):
        self._next_id += 1
        return MessageRef(str(chat_id), self._next_id, has_media)

    async def send(self, chat_id, text, markup=None):
        if "send" in self.fail:
            raise DeliveryFailed("sendMessage: Bad Gateway")
        self.sent.append((str(chat_id), text, markup))
        return self._ref(chat_id)

    async def send_photo(self, chat_id, photo, caption, markup=None):
        if "send_photo" in self.fail:
            raise DeliveryFailed("sendPhoto: Bad Gateway")
        self.photos.append((str(chat_id), photo, caption, markup))
        return self._ref(chat_id, has_media=True)

    async def edit(self, ref, text):
        if "edit" in self.fail:
            raise DeliveryFailed("editMessageText: Bad Gateway")
        self.edits.append((ref, text))

    async def ack(self, interaction_id, text):
        if "ack" in self.fail:
            raise DeliveryFailed("answerCallbackQuery: Bad Gateway")
        self.acks.append((interaction_id, text))

    def to(self, chat_id):
        return [text for cid, text, _ in self.sent if cid == str(chat_id)]


def callback(order_id, action="confirm", cq_id="cq-1", message_id=555,
             chat_id="-100", username="boss", photo=False, data=None):
    message = {"message_id": message_id, "chat": {"id": chat_id}}
    if photo:
        message["photo"] = [{"file_id": "x"}]
    return {
        "update_id": 1,
        "callback_query": {
            "id": cq_id,
            "from": {"id": 42, "username": username},
            "message": message,
            "data": data if data is not None else f"{action}_{order_id}",
        },
    }
