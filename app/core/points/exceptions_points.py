class PointsBalanceNotFoundError(Exception):
    """
    Exception raised when a balance is not found during a debit.
    This should lead to a rollback of the transaction.
    """

    def __init__(self, user_id: int):
        super().__init__(f"Points balance of user {user_id} not found when updating")


class NotEnoughPointsError(Exception):
    """
    Exception raised when a debit would make a balance negative.
    """

    def __init__(self, user_id: int, balance: int, amount: int):
        super().__init__(
            f"User {user_id} has {balance} points, {amount} points can not be debited",
        )
        self.balance = balance
        self.amount = amount
