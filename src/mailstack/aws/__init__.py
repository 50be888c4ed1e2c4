"""AWS client factory, gateway and result types."""
