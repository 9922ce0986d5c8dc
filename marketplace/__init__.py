"""Services marketplace booking core: carts, orders, earnings and payouts."""
