class BaseEngine:
    def update(self, p_mastery: float, is_correct: bool) -> float:
        raise NotImplementedError

    def predict(self, p_mastery: float) -> float:
        raise NotImplementedError
